"""
Esecuzione stored procedure per invoice-processor.

Moduli:
- client: sessioni CALL multi result set su aiomysql
- result_sets: classificazione result set per firma colonne
- diagnostics: SHOW ERRORS / SHOW WARNINGS e codici errore MySQL
- failure_detection: euristica parole chiave
- engine: ProcedureExecutionEngine
"""
