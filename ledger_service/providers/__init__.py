from .openai_extraction import OpenAIExtractionProvider

__all__ = ["OpenAIExtractionProvider"]
