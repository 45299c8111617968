from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_section: Callable[[str], Awaitable[None]],
        on_view: Callable[[str], Awaitable[None]],
        on_select: Callable[[str], Awaitable[None]],
        on_send: Callable[[str], Awaitable[None]],
        on_course: Callable[[str], Awaitable[None]],
        on_review: Callable[[str], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_section = on_section
        self._on_view = on_view
        self._on_select = on_select
        self._on_send = on_send
        self._on_course = on_course
        self._on_review = on_review
        self._on_unknown = on_unknown

    async def try_handle(self, user_input: str) -> bool:
        trimmed = user_input.strip()
        if not trimmed.startswith("/"):
            return False

        command, _, argument = trimmed.partition(" ")
        argument = argument.strip()

        if command == "/help":
            await self._on_help()
            return True
        if command == "/section":
            await self._on_section(argument)
            return True
        if command == "/view":
            await self._on_view(argument)
            return True
        if command == "/select":
            await self._on_select(argument)
            return True
        if command == "/send":
            await self._on_send(argument)
            return True
        if command in ("/content", "/assign", "/unassign"):
            await self._on_course(trimmed)
            return True
        if command == "/review":
            await self._on_review(argument)
            return True

        self._on_unknown(trimmed)
        return True
