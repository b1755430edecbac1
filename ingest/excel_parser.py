"""
Lettura file tabellari (Excel/CSV) per le tabelle di staging.

Tutte le celle vengono lette come stringa: la conversione dei tipi è a
carico delle procedure lato server.
"""
import io
import os
import logging
from typing import Dict, Any, List, Optional, Tuple

import chardet
import pandas as pd

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = (".xlsx", ".xls")
CSV_EXTENSIONS = (".csv",)
SUPPORTED_EXTENSIONS = EXCEL_EXTENSIONS + CSV_EXTENSIONS
CSV_FALLBACK_ENCODINGS = ("utf-8-sig", "cp949")
KOREAN_ENCODING_ALIASES = ("euc-kr", "cp949", "uhc")
MIN_ENCODING_CONFIDENCE = 0.8


def parse_excel(path: str) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """
    Parse file Excel con pandas.

    Sceglie lo sheet con più righe non vuote. Un file con soli sheet vuoti
    restituisce un DataFrame vuoto (non è un errore).

    Args:
        path: Percorso file locale

    Returns:
        Tuple (DataFrame, sheet_info)
    """
    try:
        excel_file = pd.ExcelFile(path)
        sheet_names = excel_file.sheet_names

        logger.info(f"[EXCEL_PARSER] {os.path.basename(path)} has {len(sheet_names)} sheets: {sheet_names}")

        if not sheet_names:
            raise ValueError("File Excel senza sheet")

        best_sheet_name = sheet_names[0]
        max_rows = 0

        for sheet_name in sheet_names:
            try:
                df_test = pd.read_excel(excel_file, sheet_name=sheet_name)
                # Conta righe non vuote (almeno una colonna non vuota)
                non_empty_rows = df_test.dropna(how='all').shape[0]

                if non_empty_rows > max_rows:
                    max_rows = non_empty_rows
                    best_sheet_name = sheet_name
                    logger.debug(f"[EXCEL_PARSER] Sheet '{sheet_name}' has {non_empty_rows} non-empty rows")
            except Exception as e:
                logger.warning(f"[EXCEL_PARSER] Error reading sheet '{sheet_name}': {e}")
                continue

        df = pd.read_excel(excel_file, sheet_name=best_sheet_name, dtype=str)

        logger.info(
            f"[EXCEL_PARSER] Excel parsed: sheet='{best_sheet_name}', "
            f"{len(df)} rows, {len(df.columns)} columns"
        )

        sheet_info = {
            'sheet_name': best_sheet_name,
            'total_sheets': len(sheet_names),
            'rows': len(df),
            'columns': len(df.columns),
            'non_empty_rows': max_rows
        }
        return df, sheet_info

    except Exception as e:
        logger.error(f"[EXCEL_PARSER] Error parsing Excel {path}: {e}")
        raise ValueError(f"Errore parsing Excel: {str(e)}")


def detect_encoding(file_content: bytes) -> Tuple[Optional[str], float]:
    """
    Rileva la codifica del CSV con chardet.

    EUC-KR viene letto come CP949 (superset usato dagli export Windows).

    Args:
        file_content: Contenuto file (bytes)

    Returns:
        Tuple (encoding, confidence); encoding None se non rilevabile
    """
    result = chardet.detect(file_content[:10000])  # Prime 10KB
    encoding = (result.get('encoding') or '').lower() or None
    confidence = result.get('confidence') or 0.0
    if encoding in KOREAN_ENCODING_ALIASES:
        encoding = "cp949"
    logger.debug(f"[CSV_PARSER] Encoding detection: {encoding} (confidence={confidence:.2f})")
    return encoding, confidence


def _candidate_encodings(file_content: bytes) -> List[str]:
    encoding, confidence = detect_encoding(file_content)
    candidates = []
    if encoding and confidence >= MIN_ENCODING_CONFIDENCE:
        candidates.append(encoding)
    for fallback in CSV_FALLBACK_ENCODINGS:
        if fallback not in candidates:
            candidates.append(fallback)
    return candidates


def parse_csv(path: str) -> pd.DataFrame:
    """Parse CSV: codifica rilevata da chardet, poi UTF-8 e CP949 come fallback."""
    with open(path, "rb") as f:
        content = f.read()
    if not content.strip():
        return pd.DataFrame()

    last_error = None
    for encoding in _candidate_encodings(content):
        try:
            df = pd.read_csv(io.BytesIO(content), dtype=str, encoding=encoding, keep_default_na=False)
            logger.info(f"[CSV_PARSER] CSV parsed with {encoding}: {len(df)} rows, {len(df.columns)} columns")
            return df
        except (UnicodeDecodeError, LookupError) as e:
            last_error = e
            continue
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
    raise ValueError(f"Errore parsing CSV: codifica non supportata ({last_error})")


def read_table(path: str) -> pd.DataFrame:
    """
    Legge un file tabellare in DataFrame di stringhe.

    Args:
        path: Percorso file locale (.xlsx, .xls, .csv)

    Returns:
        DataFrame (eventualmente vuoto)
    """
    ext = os.path.splitext(path)[1].lower()
    if ext in CSV_EXTENSIONS:
        return parse_csv(path)
    if ext in EXCEL_EXTENSIONS:
        df, _ = parse_excel(path)
        return df
    raise ValueError(f"Formato file non supportato: {ext or '(nessuna estensione)'}")
