"""
Configurazione per invoice-processor usando pydantic-settings.

Gestisce le variabili d'ambiente per database, sorgenti file esterne,
procedure di caricamento e notifiche.
"""
import logging
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Carica .env
load_dotenv()

logger = logging.getLogger(__name__)


class ProcessorConfig(BaseSettings):
    """Configurazione completa del processor."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    database_url: str = Field(default="", description="URL connessione MySQL (mysql+aiomysql://...)")
    procedure_timeout_sec: float = Field(default=600.0, gt=0, description="Timeout chiamata stored procedure (secondi)")
    db_insert_batch_size: int = Field(default=500, ge=1, le=10000, description="Batch size per insert DB")

    # Server
    port: int = Field(default=8001, description="Porta server FastAPI")

    # Logging
    log_file_path: str = Field(default="logs/invoice_processor.log", description="File log append-only condiviso")
    log_level: str = Field(default="INFO", description="Livello log console")

    # Mapping colonne Excel -> tabella
    column_mapping_path: str = Field(default="column_mapping.json", description="File JSON con mapping colonne per tabella")

    # Dropbox
    dropbox_access_token: str = Field(default="", description="Token accesso Dropbox")
    dropbox_timeout_sec: float = Field(default=60.0, gt=0, description="Timeout download Dropbox (secondi)")

    # KakaoWork
    kakaowork_bot_token: str = Field(default="", description="Token bot KakaoWork")
    kakaowork_check_conversation_id: str = Field(default="", description="Chat KakaoWork per notifiche esito pipeline")

    # Sorgenti file esterne (cartella o percorso completo su Dropbox)
    message_source_path: str = Field(default="", description="Sorgente file messaggi spedizione")
    product_source_path: str = Field(default="", description="Sorgente file registrazione articoli")
    merge_packing_source_path: str = Field(default="", description="Sorgente file regole imballaggio combinato")
    gamcheon_source_path: str = Field(default="", description="Sorgente file Excel Gamcheon")
    talkdeal_source_path: str = Field(default="", description="Sorgente file articoli TalkDeal non ammessi")

    # Procedure di caricamento
    gamcheon_loader_procedure: str = Field(default="sp_Excel_Proc4", description="Procedura loader per Excel Gamcheon")

    # Processor info
    processor_name: str = Field(default="Invoice Processor", description="Nome processor")
    processor_version: str = Field(default="1.0.0", description="Versione processor")

    def get_setting(self, key: str) -> Optional[str]:
        """
        Legge un valore di configurazione per nome.

        Args:
            key: Nome campo configurazione (case-insensitive)

        Returns:
            Valore senza spazi, None se assente o vuoto
        """
        value = getattr(self, key.lower(), None)
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    def validate_config(self) -> bool:
        """Valida configurazione critica."""
        errors = []

        if not self.database_url:
            errors.append("DATABASE_URL non configurato")

        if not self.dropbox_access_token:
            # Warning, non errore (download sorgenti esterne falliranno allo stage)
            logger.warning("DROPBOX_ACCESS_TOKEN non configurato - download sorgenti esterne disabilitato")

        if not self.kakaowork_bot_token:
            logger.warning("KAKAOWORK_BOT_TOKEN non configurato - notifiche chat disabilitate")

        if errors:
            error_msg = "❌ Configurazione processor mancante:\n" + "\n".join(f"  - {error}" for error in errors)
            logger.error(error_msg)
            raise ValueError(error_msg)

        logger.info("✅ Configurazione processor validata con successo")
        return True


# Istanza globale configurazione
_config: Optional[ProcessorConfig] = None


def get_config() -> ProcessorConfig:
    """Ottiene istanza configurazione (singleton)."""
    global _config
    if _config is None:
        _config = ProcessorConfig()
    return _config


def validate_config() -> bool:
    """Valida configurazione critica (funzione standalone)."""
    config = get_config()
    return config.validate_config()
