"""
Configurazione pytest e fixture comuni.
"""
import json
import os
import sys

import pandas as pd
import pytest

# Root progetto importabile senza installazione
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


@pytest.fixture
def mapping_file(tmp_path):
    """File mapping colonne per tabelle di test."""
    data = {
        "mappings": {
            "order_table": {
                "table_name": "송장출력_사방넷원본변환",
                "columns": {
                    "주문번호": {"db_column": "order_no"},
                    "수량": {"db_column": "qty", "data_type": "int", "default_value": 0},
                },
            },
            "송장출력_메세지": {
                "columns": {
                    "주문번호": "order_no",
                    "메세지": "message",
                }
            },
            "비활성": {
                "is_active": False,
                "columns": {"a": "a"},
            },
        }
    }
    path = tmp_path / "column_mapping.json"
    path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    return str(path)


@pytest.fixture
def message_frame():
    """DataFrame sorgente messaggi con una riga vuota."""
    return pd.DataFrame(
        {
            "주문번호": ["A-1", "A-2", None],
            "메세지": ["문 앞", "경비실", None],
            "기타": ["x", "y", None],
        },
        dtype=object,
    )
