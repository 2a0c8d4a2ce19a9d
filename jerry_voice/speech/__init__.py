"""
Speech capture/playback gateway
"""

from .base import (
    AlreadyActiveError,
    FinalTranscript,
    InterimTranscript,
    RecognitionEnded,
    RecognitionEvent,
    RecognitionFault,
    RecognitionHandle,
    RecognitionStarted,
    SpeakOptions,
    SpeechError,
    SpeechGateway,
    SynthesisError,
    UnsupportedError,
)
from .websocket_gateway import WebSocketSpeechGateway

__all__ = [
    'AlreadyActiveError',
    'FinalTranscript',
    'InterimTranscript',
    'RecognitionEnded',
    'RecognitionEvent',
    'RecognitionFault',
    'RecognitionHandle',
    'RecognitionStarted',
    'SpeakOptions',
    'SpeechError',
    'SpeechGateway',
    'SynthesisError',
    'UnsupportedError',
    'WebSocketSpeechGateway',
]
