"""AI provider clients: chat, image generation, vision analysis and usage logging"""

from .chat import ChatCompletionClient
from .image_analysis import ImageAnalysisService
from .image_generation import ImageGenerator
from .operation_log import AILogger

__all__ = ["AILogger", "ChatCompletionClient", "ImageAnalysisService", "ImageGenerator"]
