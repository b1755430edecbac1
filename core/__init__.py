"""
Core functionality per invoice-processor.

Questo modulo contiene:
- Configurazione (config.py)
- Database e staging (database.py)
- Job management (job_manager.py)
- Logging (logger.py)
- Errori e classificazione (errors.py, error_classifier.py)
- Avanzamento e annullamento (progress.py, cancellation.py)
"""
