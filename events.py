"""Входящие события WhatsApp.

Боту нужны только текстовые сообщения. Все остальное, что сообщает сессия
(отчеты о доставке, присутствие, обновления QR), приходит как ``OtherEvent``
и игнорируется диспетчером.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class MessageEvent:
    sender: str
    chat: str
    is_group: bool = False
    conversation: str = ""
    extended_text: str = ""
    message_id: str = ""


@dataclass(frozen=True)
class OtherEvent:
    kind: str


Event = MessageEvent | OtherEvent


def extract_text(event: MessageEvent) -> str:
    """Текст сообщения; у ответов с цитатой он лежит в ``extended_text``."""
    if event.conversation:
        return event.conversation
    return event.extended_text or ""


def reply_target(event: MessageEvent) -> str:
    # В группе отвечаем в сам чат, а не автору
    if event.is_group:
        return event.chat
    return event.sender
