import os
import sys
from dotenv import load_dotenv
from pydantic import ValidationError, Field
from pydantic_settings import BaseSettings
from util.enums import Environment
import logging


if os.getenv("APP_ENV", Environment.DEV) == Environment.DEV:
    load_dotenv()

_log = logging.getLogger("config.settings")


class Settings(BaseSettings):
    # App
    APP_ENV: str = Field(..., validation_alias="APP_ENV")
    REDIS_URL: str = Field(..., validation_alias="REDIS_URL")
    PERSISTENCE_TTL_SECONDS: int = Field(
        default=7 * 24 * 3600, validation_alias="PERSISTENCE_TTL_SECONDS"
    )

    # CORS & Limits
    ALLOWED_ORIGIN: str = Field(..., validation_alias="ALLOWED_ORIGIN")
    RATE_LIMIT_TIMES: int = Field(default=30, validation_alias="RATE_LIMIT_TIMES")
    RATE_LIMIT_SECONDS: int = Field(default=60, validation_alias="RATE_LIMIT_SECONDS")
    MAX_FILE_MB: int = Field(default=20, validation_alias="MAX_FILE_MB")
    TRUST_PROXY: bool = Field(default=False, validation_alias="TRUST_PROXY")

    # Anthropic Settings
    ANTHROPIC_API_URL: str = Field(
        default="https://api.anthropic.com/v1/messages",
        validation_alias="ANTHROPIC_API_URL",
    )
    ANTHROPIC_API_KEY: str = Field(..., validation_alias="ANTHROPIC_API_KEY")
    ANTHROPIC_MODEL: str = Field(..., validation_alias="ANTHROPIC_MODEL")
    ANTHROPIC_VERSION: str = Field(
        default="2023-06-01", validation_alias="ANTHROPIC_VERSION"
    )
    ANTHROPIC_TIMEOUT_SECONDS: float = 120.0
    EXTRACT_MAX_TOKENS: int = 8192
    HEADER_MAX_TOKENS: int = 500
    EXPAND_MAX_TOKENS: int = 200
    EXPAND_BATCH_MAX_TOKENS: int = 2000

    # Embedding Engine
    EMBEDDING_MODEL_NAME: str = Field(
        default="sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2",
        validation_alias="EMBEDDING_MODEL_NAME",
    )
    EMBEDDING_BATCH_SIZE: int = 64

    # Nomenclature data (ingested separately, loaded at startup)
    NCM_CSV_PATH: str = Field(
        default="data/ncm_nomenclator.csv", validation_alias="NCM_CSV_PATH"
    )
    NCM_EMBEDDINGS_PATH: str = Field(
        default="data/ncm_embeddings.npy", validation_alias="NCM_EMBEDDINGS_PATH"
    )

    # Extraction pipeline
    SINGLE_CALL_MAX_PAGES: int = 5
    PAGE_DELAY_SECONDS: float = Field(default=30.0, validation_alias="PAGE_DELAY_SECONDS")
    PAGE_LINE_OFFSET: int = 100
    RATE_LIMIT_BACKOFF_SECONDS: float = 15.0
    RATE_LIMIT_BACKOFF_CAP_SECONDS: float = 60.0
    RATE_LIMIT_MAX_ATTEMPTS: int = 5

    # Search
    SEARCH_DEFAULT_LIMIT: int = 10
    SEARCH_DEFAULT_THRESHOLD: float = 0.5
    CLASSIFY_SEMANTIC_THRESHOLD: float = 0.3

    # Logging knobs
    LOGGER_NAME: str = "ncm-classifier"
    LOG_LEVEL: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    LOG_TO_FILE: bool = Field(default=False, validation_alias="LOG_TO_FILE")
    LOG_DIR: str = Field(default="logs", validation_alias="LOG_DIR")
    LOG_FILE_NAME: str = Field(default="app.log", validation_alias="LOG_FILE_NAME")
    LOG_MAX_BYTES: int = Field(
        default=50 * 1024 * 1024, validation_alias="LOG_MAX_BYTES"
    )
    LOG_BACKUP_COUNT: int = Field(default=5, validation_alias="LOG_BACKUP_COUNT")

    # Prompts
    EXTRACT_ITEMS_PROMPT: str = (
        "You are an expert in foreign trade and customs brokerage.\n"
        "Extract EVERY line item from this commercial invoice fragment.\n"
        "\n"
        "For each item return:\n"
        "- line_number (starting at {start_line})\n"
        "- sku (product code/reference, null if none)\n"
        "- original_description (exactly as printed)\n"
        "- suggested_customs_description (simplified wording for customs, in Spanish)\n"
        "- suggested_ncm_code (NCM code if you can infer it, else null)\n"
        "- quantity, unit_of_measure, unit_price, total_price\n"
        "- currency (USD, EUR, CNY, ...)\n"
        "- country_of_origin (if stated, else null)\n"
        "\n"
        "RULES:\n"
        "- Extract ALL items, do not skip any.\n"
        "- Prices are plain numbers without currency symbols.\n"
        "- Use null for any missing field.\n"
        "- Answer ONLY with a JSON array, no markdown: [{ ... }, { ... }]\n"
    )

    EXTRACT_HEADER_PROMPT: str = (
        "Extract ONLY the general information of this invoice (NOT the items):\n"
        "- provider_name: supplier/exporter name\n"
        "- invoice_number: invoice number\n"
        "- invoice_date: date as printed\n"
        "- currency: main currency\n"
        "\n"
        'Answer ONLY with JSON: {"provider_name":"...","invoice_number":"...",'
        '"invoice_date":"...","currency":"..."}\n'
    )

    EXPAND_QUERY_PROMPT: str = (
        "You are a Mercosur NCM customs classifier.\n"
        "Rewrite the product as the description the NCM nomenclature would use, in Spanish.\n"
        "\n"
        "RULES:\n"
        "- ONE phrase, at most 12 words.\n"
        "- Name the product CATEGORY in customs terminology "
        '(e.g. "mouse" -> "unidad de entrada para máquinas de procesamiento de datos").\n'
        "- Do NOT add technical attributes that are not in the text.\n"
        "- No lists, synonyms or explanations. Answer ONLY with the phrase.\n"
        "\n"
        "Examples:\n"
        '- "mouse inalámbrico" -> "Unidad de entrada inalámbrica para máquinas de procesamiento de datos"\n'
        '- "televisor 50 pulgadas" -> "Aparato receptor de televisión de 50 pulgadas"\n'
        '- "tornillos de acero" -> "Tornillos de hierro o acero"\n'
        '- "cable USB" -> "Cable eléctrico para transmisión de datos"\n'
        '- "muñeca Barbie" -> "Muñecas, juguetes que representen figuras humanas"\n'
        "\n"
        'Product: "{query}"'
    )

    EXPAND_BATCH_PROMPT: str = (
        "You are a Mercosur NCM customs classifier.\n"
        "For each product write ONE short phrase (max 12 words, in Spanish) with the "
        "description the NCM nomenclature would use.\n"
        "\n"
        "RULES:\n"
        "- Name the CATEGORY in customs terminology.\n"
        "- Do NOT add attributes that are not in the text.\n"
        "- Answer ONLY with the numbered list, one line per product, same numbering.\n"
        "\n"
        "Products:\n"
        "{numbered}"
    )


try:
    settings = Settings()
except ValidationError as e:
    print("❌ Missing/invalid environment variables:", file=sys.stderr)
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", []))
        msg = err.get("msg", "")
        print(f" - {loc}: {msg}", file=sys.stderr)
    sys.exit(1)
except Exception as e:
    print(f"❌ Settings initialization failed: {e}", file=sys.stderr)
    sys.exit(1)
