"""Wiring of the database and external service clients used by the actions."""

from typing import Optional

from loguru import logger

from .ai.chat import ChatCompletionClient
from .ai.image_analysis import ImageAnalysisService
from .ai.image_generation import ImageGenerator
from .ai.operation_log import AILogger
from .billing.credits import CreditManager
from .integrations.auth import AuthClient
from .integrations.object_storage import ObjectStorage
from .storage.database import Database
from .utils.config import Config, Settings, get_config, get_settings


class Services:
    """Everything an action needs, built once per process.

    Tests build this by hand with fakes for the network clients.
    """

    def __init__(
        self,
        config: Config,
        db: Database,
        credits: CreditManager,
        ai_logger: AILogger,
        chat: ChatCompletionClient,
        images: ImageGenerator,
        analysis: ImageAnalysisService,
        storage: ObjectStorage,
        auth: AuthClient,
    ):
        self.config = config
        self.db = db
        self.credits = credits
        self.ai_logger = ai_logger
        self.chat = chat
        self.images = images
        self.analysis = analysis
        self.storage = storage
        self.auth = auth


def build_services(
    config: Optional[Config] = None,
    settings: Optional[Settings] = None,
    db: Optional[Database] = None,
) -> Services:
    """Create the production service graph from configuration."""
    config = config or get_config()
    settings = settings or get_settings()

    db = db or Database(config.database.url, echo=config.database.echo)
    ai_logger = AILogger(db, environment=settings.environment)

    chat = ChatCompletionClient(
        api_key=settings.openai_api_key,
        default_model=config.ai.chat_model,
        max_retries=config.ai.chat_max_retries,
        retry_base_delay=config.ai.chat_retry_base_delay,
        timeout=config.ai.request_timeout,
    )
    images = ImageGenerator(
        api_key=settings.gemini_api_key,
        default_model=config.ai.image_model,
        fallback_model=config.ai.image_fallback_model,
        retry_initial_delay=config.ai.image_retry_initial_delay,
        timeout=config.ai.request_timeout,
        ai_logger=ai_logger,
    )
    analysis = ImageAnalysisService(
        db,
        chat,
        vision_model=config.ai.vision_model,
        ttl_days=config.analysis_cache.ttl_days,
        ai_logger=ai_logger,
    )
    storage = ObjectStorage(
        config.storage.url,
        bucket=config.storage.bucket,
        service_key=settings.backend_service_key,
        max_attempts=config.storage.max_attempts,
        timeout=config.storage.timeout,
    )
    auth = AuthClient(
        config.auth.url, anon_key=settings.backend_anon_key, timeout=config.auth.timeout
    )

    logger.info("Services initialized")
    return Services(
        config=config,
        db=db,
        credits=CreditManager(db),
        ai_logger=ai_logger,
        chat=chat,
        images=images,
        analysis=analysis,
        storage=storage,
        auth=auth,
    )
