"""
Rilevamento euristico di fallimenti nel testo di esito.

Ultima rete di sicurezza del motore procedure: alcune procedure stampano un
errore testuale dentro un result set apparentemente riuscito. Il rilevatore
è una funzione sostituibile iniettata in ProcedureExecutionEngine.
"""
from typing import Callable, Iterable, Tuple

FAILURE_KEYWORDS: Tuple[str, ...] = (
    "error",
    "failed",
    "exception",
    "rolled back",
    "rollback",
    "오류",
    "실패",
    "예외",
    "롤백",
)

FailureDetector = Callable[[str], bool]


def looks_like_failure(text: str, keywords: Iterable[str] = FAILURE_KEYWORDS) -> bool:
    """
    True se il testo contiene una parola chiave di errore (case-insensitive).

    Args:
        text: Testo esito procedura
        keywords: Parole chiave da cercare

    Returns:
        True se almeno una parola chiave è presente
    """
    if not text:
        return False
    lowered = text.lower()
    return any(keyword.lower() in lowered for keyword in keywords)
