"""
Ingest pipeline per elaborazione fatture.

Questo modulo contiene:
- stages: catalogo ordinato degli stage (caricamento sorgenti + procedure)
- gateway: download sorgenti esterne e caricamento tabelle di staging
- pipeline: orchestratore con limite max_step e classificazione errori
- excel_parser / column_mapping: lettura file e mapping colonne
"""
