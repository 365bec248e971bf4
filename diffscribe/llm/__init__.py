from .base import LLMClient, LLMError, TransportError, GenerationCancelled
from .stream_decoder import CancelToken, DecodeOutcome, DecodeResult, StreamDecoder, TokenEvent
from .ollama import OllamaClient
