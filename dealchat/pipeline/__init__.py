"""
Pipeline package for DealChat.

Contains the orchestrator that connects every stage into one chat turn.
"""

from dealchat.pipeline.orchestrator import ChatPipeline, ChatReply, create_pipeline

__all__ = ["ChatPipeline", "ChatReply", "create_pipeline"]
