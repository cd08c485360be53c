from adchat.schemas.video_chat import (
    ConversationMessageOut,
    ConversationVideoOut,
    GenerateVideoIn,
    GenerateVideoOut,
    JobStatusOut,
    ProductAdOut,
    VideoConversationCreateIn,
    VideoConversationOut,
    VideoMessageOut,
)

__all__ = [
    "ConversationMessageOut",
    "ConversationVideoOut",
    "GenerateVideoIn",
    "GenerateVideoOut",
    "JobStatusOut",
    "ProductAdOut",
    "VideoConversationCreateIn",
    "VideoConversationOut",
    "VideoMessageOut",
]
