"""
Catalogo stage della pipeline fatture.

Ogni stage è descritto da una StageDefinition (sorgente da caricare,
tabella, procedura loader, procedura di trasformazione) e compilato in uno
Stage con corpo async. L'ordine del catalogo è l'ordine di esecuzione.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

from core.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED_BY_BOUND = "skipped_by_bound"


@dataclass
class StageContext:
    """Dati condivisi dagli stage di una esecuzione."""

    artifact_path: str
    cancel_token: Optional[CancellationToken] = None
    notes: List[str] = field(default_factory=list)


StageBody = Callable[[StageContext], Awaitable[None]]


@dataclass(frozen=True)
class StageDefinition:
    """
    Descrizione dichiarativa di uno stage.

    Attributes:
        label: Nome visualizzato
        procedure: Procedura di trasformazione da eseguire (opzionale)
        source_key: Chiave configurazione della sorgente esterna (opzionale)
        table: Tabella di staging per il caricamento con mapping
        default_file_name: Nome file se la sorgente è una cartella
        loader_key: Chiave configurazione della procedura loader
        uses_input_artifact: Carica il file ordini passato a run()
    """

    label: str
    procedure: Optional[str] = None
    source_key: Optional[str] = None
    table: Optional[str] = None
    default_file_name: Optional[str] = None
    loader_key: Optional[str] = None
    uses_input_artifact: bool = False


@dataclass(frozen=True)
class Stage:
    index: int
    label: str
    body: StageBody
    progress_weight: int


ORDER_TABLE = "송장출력_사방넷원본변환"

INVOICE_STAGE_DEFINITIONS: Sequence[StageDefinition] = (
    StageDefinition("Caricamento ordini", table=ORDER_TABLE, uses_input_artifact=True),
    StageDefinition(
        "Messaggi di spedizione", source_key="message_source_path",
        table="송장출력_메세지", default_file_name="송장출력_메세지.xlsx"
    ),
    StageDefinition(
        "Registrazione articoli", source_key="product_source_path",
        table="품목등록", default_file_name="품목등록.xlsx"
    ),
    StageDefinition(
        "Regole imballaggio combinato", source_key="merge_packing_source_path",
        table="송장출력_특수출력_합포장변경", default_file_name="합포장변경.xlsx"
    ),
    StageDefinition("Imballaggio combinato", procedure="sp_MergePacking"),
    StageDefinition(
        "Excel Gamcheon", source_key="gamcheon_source_path",
        default_file_name="감천특별출고.xlsx", loader_key="gamcheon_loader_procedure"
    ),
    StageDefinition("Separazione spedizioni Gamcheon", procedure="InvoiceSplit01"),
    StageDefinition(
        "Articoli TalkDeal non ammessi", source_key="talkdeal_source_path",
        table="송장출력_톡딜불가", default_file_name="톡딜불가.xlsx",
        procedure="sp_TalkDealUnavailable"
    ),
    StageDefinition("Marcatura stelle", procedure="sp_ProcessStarInvoice"),
    StageDefinition("Marcatura indirizzi Jeju", procedure="sp_JejuMarking"),
    StageDefinition("Marcatura articoli box", procedure="sp_BoxMarking"),
    StageDefinition("Evento Kakao", procedure="sp_KakaoEventProcess"),
    StageDefinition("Classificazione magazzino", procedure="sp_ShipmentCenterClassify"),
    StageDefinition("Seoul freddo", procedure="sp_SeoulProcessF"),
    StageDefinition("Seoul Gongsan", procedure="sp_SeoulGongsanProcessF"),
    StageDefinition("Gyeonggi freddo", procedure="sp_GyeonggiProcessF"),
    StageDefinition("Gyeonggi Gongsan", procedure="sp_GyeonggiGongsanProcessF"),
    StageDefinition("Busan Cheonggwa", procedure="sp_BusanCheonggwaProcessF"),
    StageDefinition("Busan spedizioni esterne", procedure="sp_BusanExtShipmentProcess"),
    StageDefinition("Gamcheon freddo", procedure="sp_GamcheonProcessF"),
    StageDefinition("Elaborazione finale", procedure="sp_InvoiceFinalProcess"),
)


def make_stage_body(definition: StageDefinition, gateway, engine) -> StageBody:
    """
    Corpo async di uno stage: caricamento (se previsto) poi procedura.

    Un caricamento a zero righe non salta la procedura.
    """
    async def body(ctx: StageContext) -> None:
        token = ctx.cancel_token

        if definition.uses_input_artifact:
            rows = await gateway.load_file_via_mapping(ctx.artifact_path, definition.table, token)
            ctx.notes.append(f"{definition.label}: {rows} righe caricate")
        elif definition.source_key and definition.loader_key:
            await gateway.fetch_and_load_via_procedure(
                definition.source_key, definition.loader_key, definition.default_file_name, token
            )
            ctx.notes.append(f"{definition.label}: caricamento tramite procedura completato")
        elif definition.source_key:
            rows = await gateway.load_via_mapping(
                definition.source_key, definition.table, definition.default_file_name, token
            )
            ctx.notes.append(f"{definition.label}: {rows} righe caricate")

        if definition.procedure:
            outcome = await engine.execute(definition.procedure, cancel_token=token)
            ctx.notes.append(outcome)

    return body


def compile_stages(definitions: Sequence[StageDefinition], gateway, engine) -> List[Stage]:
    """Compila le definizioni in Stage ordinati (indice 1..N)."""
    total = len(definitions)
    return [
        Stage(
            index=i,
            label=definition.label,
            body=make_stage_body(definition, gateway, engine),
            progress_weight=round(i * 100 / total),
        )
        for i, definition in enumerate(definitions, start=1)
    ]


def build_invoice_stages(gateway, engine) -> List[Stage]:
    """Catalogo completo della pipeline fatture."""
    return compile_stages(INVOICE_STAGE_DEFINITIONS, gateway, engine)
