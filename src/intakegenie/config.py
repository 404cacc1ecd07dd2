"""Startup configuration.

validate_config() checks required environment variables before the server
accepts calls, so a missing key is a clear startup failure rather than a
silent mid-call crash. load_settings() reads everything into one Settings
object that the app wires its clients from.
"""

import os
import sys
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "OPENAI_API_KEY",
    "APP_BASE_URL",
]

OPTIONAL_VARS = [
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "DEEPGRAM_API_KEY",
    "RESEND_API_KEY",
    "RESEND_FROM_ADDRESS",
    "WATCHDOG_SECRET",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
    "DEFAULT_FIRM_ID",
    "LOG_LEVEL",
]


@dataclass
class Settings:
    openai_api_key: str = ""
    app_base_url: str = "http://localhost:8000"
    llm_model: str = "gpt-4o-mini"
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    deepgram_api_key: str = ""
    resend_api_key: str = ""
    resend_from_address: str = ""
    watchdog_secret: str = ""
    supabase_url: str = ""
    supabase_service_key: str = ""
    default_firm_id: str = ""
    log_level: str = "INFO"


def load_settings() -> Settings:
    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        app_base_url=os.getenv("APP_BASE_URL", "http://localhost:8000").rstrip("/"),
        llm_model=os.getenv("LLM_MODEL", "gpt-4o-mini"),
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
        twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
        deepgram_api_key=os.getenv("DEEPGRAM_API_KEY", ""),
        resend_api_key=os.getenv("RESEND_API_KEY", ""),
        resend_from_address=os.getenv("RESEND_FROM_ADDRESS", ""),
        watchdog_secret=os.getenv("WATCHDOG_SECRET", ""),
        supabase_url=os.getenv("SUPABASE_URL", ""),
        supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY", ""),
        default_firm_id=os.getenv("DEFAULT_FIRM_ID", ""),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


def validate_config() -> None:
    """Exit with status 1 if a required variable is unset or empty.

    Optional variables only log a warning: the features behind them
    (recording transcripts, email, Supabase, pre-generated speech) are
    switched off when their keys are missing.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]
    if missing:
        print(
            "\nFATAL: IntakeGenie cannot start, missing environment variables: "
            f"{', '.join(missing)}\n"
            "Set them in .env for local runs or in the deployment's secret store.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set, related features disabled", var)
