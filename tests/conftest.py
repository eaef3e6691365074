import pytest

from packstudio.ai.image_analysis import ImageAnalysisService
from packstudio.ai.operation_log import AILogger
from packstudio.billing.credits import CreditManager
from packstudio.integrations.auth import AuthUser
from packstudio.services import Services
from packstudio.storage import Database
from packstudio.utils.config import Config

from .fakes import FakeAuth, FakeChat, FakeImages, FakeStorage


@pytest.fixture
def db():
    return Database("sqlite:///:memory:")


@pytest.fixture
def chat():
    return FakeChat()


@pytest.fixture
def images():
    return FakeImages()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def creator(db):
    user = AuthUser(id="creator-1", email="maya@example.com")
    db.ensure_user(user.id, user.email, user.role)
    return user


@pytest.fixture
def services(db, chat, images, storage, creator):
    ai_logger = AILogger(db, environment="test")
    return Services(
        config=Config(),
        db=db,
        credits=CreditManager(db),
        ai_logger=ai_logger,
        chat=chat,
        images=images,
        analysis=ImageAnalysisService(db, chat, ai_logger=ai_logger, max_attempts=1),
        storage=storage,
        auth=FakeAuth({"good-token": creator}),
    )
