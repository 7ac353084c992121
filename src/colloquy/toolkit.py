"""Factories for the assistant's built-in tools.

Each factory takes the collaborator that does the real work (a search
client, a text extractor, a calendar store, ...) and returns a
:class:`~colloquy.tools.Tool` ready to register::

    table = ToolDispatchTable([
        web_search(my_search_client.search),
        read_files(extract_text),
    ])

Collaborators may be sync or async.
"""

from __future__ import annotations

import calendar
import inspect
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel

from colloquy.context import ToolContext
from colloquy.errors import ToolExecutionFailure
from colloquy.message import Attachment
from colloquy.tools import ChoiceResult, DataResult, TextResult, Tool, join_all, tool

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d %H:%M"

_IMAGE_SUFFIXES = (".heic", ".jpeg", ".jpg", ".png")


async def _call(func: Callable, *args) -> Any:
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def web_search(search: Callable[[str], Any]) -> Tool:
    """Build the ``search`` tool around ``search(query) -> str``."""

    async def run(query: str) -> TextResult:
        """Search the web for up-to-date information.

        Args:
            query: What to search for.
        """
        results = await _call(search, query)
        if not results:
            raise ToolExecutionFailure(f"no results for {query!r}")
        return TextResult(content=str(results))

    return tool(run, name="search")


def read_files(extract_text: Callable[[Attachment], Any]) -> Tool:
    """Build a ``read_files`` tool around ``extract_text(attachment) -> str``.

    Paths are resolved against the attachments in the conversation.
    All files are read concurrently; if any of them fails the whole
    call fails.
    """

    async def run(file_paths: list[str], context: ToolContext) -> TextResult:
        """Read the text content of files the user attached.

        Args:
            file_paths: Paths or names of the attached files to read.
        """
        if not file_paths:
            raise ToolExecutionFailure("no files given")
        attachments = [context.resolve(path) for path in file_paths]
        texts = await join_all(*[_call(extract_text, a) for a in attachments])
        sections = [
            f"{attachment.render()}\n{text}"
            for attachment, text in zip(attachments, texts)
        ]
        return TextResult(content="\n\n".join(sections))

    return tool(run, name="read_files")


def convert_media(convert: Callable[[Attachment, str], Any]) -> Tool:
    """Build a ``convert_media`` tool around
    ``convert(attachment, target_format) -> path``.
    """

    async def run(file_paths: list[str], target_format: str, context: ToolContext) -> DataResult:
        """Convert attached media files to another format.

        Args:
            file_paths: Paths or names of the attached files to convert.
            target_format: File extension to convert to, e.g. ``mp3``.
        """
        if not file_paths:
            raise ToolExecutionFailure("no files given")
        sources = [context.resolve(path) for path in file_paths]
        outputs = await join_all(*[_call(convert, s, target_format) for s in sources])
        converted = [
            Attachment(path=str(path), kind=source.kind)
            for source, path in zip(sources, outputs)
        ]
        logger.debug(f"Converted {len(converted)} files to {target_format}")
        return DataResult(
            attachments=converted,
            content=f"Converted {len(converted)} file(s) to {target_format}.",
        )

    return tool(run, name="convert_media")


def search_contacts(lookup: Callable[[str], Any]) -> Tool:
    """Build a ``search_contacts`` tool around ``lookup(name) -> list[str]``.

    A single match is returned as text.  Several matches become a
    choice the user has to resolve before the chain continues.
    """

    async def run(name: str) -> TextResult | ChoiceResult:
        """Find a contact in the user's address book.

        Args:
            name: Full or partial name of the contact.
        """
        matches = list(await _call(lookup, name) or [])
        if not matches:
            raise ToolExecutionFailure(f"no contact matches {name!r}")
        if len(matches) == 1:
            return TextResult(content=matches[0])
        return ChoiceResult(
            options=matches,
            prompt=f"Several contacts match {name!r}. Which one did you mean?",
        )

    return tool(run, name="search_contacts")


def user_location(locate: Callable[[], Any]) -> Tool:
    """Build the ``get_user_location`` tool around ``locate() -> str``."""

    async def run() -> TextResult:
        """Get the user's current location."""
        location = await _call(locate)
        if not location:
            raise ToolExecutionFailure("location unavailable")
        return TextResult(content=str(location))

    return tool(run, name="get_user_location")



def _parse_date(value: str, field: str) -> datetime:
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT)
    except ValueError:
        raise ToolExecutionFailure(
            f"{field} {value!r} is not in yyyy-MM-dd HH:mm format"
        ) from None


def _end_of_month(moment: datetime) -> datetime:
    last_day = calendar.monthrange(moment.year, moment.month)[1]
    return moment.replace(day=last_day, hour=23, minute=59, second=0, microsecond=0)


class CalendarEvent(BaseModel):
    """An event the model asked to add to the user's calendar."""

    title: str
    start: datetime
    end: datetime
    all_day: bool = False
    location: str | None = None


class Reminder(BaseModel):
    """A reminder the model asked to create."""

    title: str
    due: datetime
    notes: str = ""


def get_calendar(
    fetch: Callable[[datetime, datetime, str], Any],
    now: Callable[[], datetime] = datetime.now,
) -> Tool:
    """Build the ``get_calendar`` tool around
    ``fetch(start, end, text_filter) -> list[str]``.

    A blank start means an hour ago; a blank end means the end of the
    start date's month.
    """

    async def run(start_date: str = "", end_date: str = "", text_filter: str = "") -> TextResult:
        """Get the user's calendar, including events and reminders.

        Args:
            start_date: Earliest entries to load, in yyyy-MM-dd HH:mm.
                Leave blank for an hour before the current time.
            end_date: Latest entries to load, in yyyy-MM-dd HH:mm. Leave
                blank for the end of the start date's month.
            text_filter: Search terms to narrow the entries down.
        """
        start = _parse_date(start_date, "start_date") if start_date else now() - timedelta(hours=1)
        end = _parse_date(end_date, "end_date") if end_date else _end_of_month(start)
        if end < start:
            raise ToolExecutionFailure("end_date is before start_date")
        entries = list(await _call(fetch, start, end, text_filter) or [])
        if not entries:
            return TextResult(
                content=f"No events or reminders between {start:{DATE_FORMAT}} and {end:{DATE_FORMAT}}."
            )
        return TextResult(content="\n".join(str(entry) for entry in entries))

    return tool(run, name="get_calendar")


def create_calendar_event(create: Callable[[CalendarEvent], Any]) -> Tool:
    """Build the ``create_calendar_event`` tool around ``create(event)``."""

    async def run(
        title: str,
        start_date: str,
        end_date: str,
        all_day: bool = False,
        location: str = "",
    ) -> TextResult:
        """Create an entry in the user's calendar.

        Args:
            title: Name of the event, e.g. Lunch or Team Meeting.
            start_date: Start of the event in yyyy-MM-dd HH:mm.
            end_date: End of the event in yyyy-MM-dd HH:mm.
            all_day: Whether the event lasts all day.
            location: Where the event takes place.
        """
        event = CalendarEvent(
            title=title,
            start=_parse_date(start_date, "start_date"),
            end=_parse_date(end_date, "end_date"),
            all_day=all_day,
            location=location or None,
        )
        if event.end < event.start:
            raise ToolExecutionFailure("end_date is before start_date")
        await _call(create, event)
        logger.info(f"Created calendar event {title!r}")
        return TextResult(content=f"Created {title!r} on {event.start:{DATE_FORMAT}}.")

    return tool(run, name="create_calendar_event")


def create_reminder(create: Callable[[Reminder], Any]) -> Tool:
    """Build the ``create_reminder`` tool around ``create(reminder)``."""

    async def run(title: str, due_date: str, notes: str = "") -> TextResult:
        """Create a new reminder in the user's reminders list.

        Args:
            title: Title of the reminder.
            due_date: When the reminder is due, in yyyy-MM-dd HH:mm.
            notes: Additional notes for the reminder.
        """
        reminder = Reminder(title=title, due=_parse_date(due_date, "due_date"), notes=notes)
        await _call(create, reminder)
        logger.info(f"Created reminder {title!r}")
        return TextResult(content=f"Reminder {title!r} set for {reminder.due:{DATE_FORMAT}}.")

    return tool(run, name="create_reminder")


def math_ocr(recognize: Callable[[Attachment], Any]) -> Tool:
    """Build the ``math_ocr`` tool around ``recognize(attachment) -> str``.

    Only photos are accepted.  Each photo is recognized concurrently and
    the equations come back as LaTeX, one section per photo.
    """

    async def run(file_paths: list[str], context: ToolContext) -> TextResult:
        """Read math equations from photos.

        Use this only for photos ending in .heic, .jpeg, .jpg or .png,
        never for documents.

        Args:
            file_paths: Paths or names of the photos to read.
        """
        if not file_paths:
            raise ToolExecutionFailure("no files given")
        photos = [context.resolve(path) for path in file_paths]
        rejected = [p.name for p in photos if not p.name.lower().endswith(_IMAGE_SUFFIXES)]
        if rejected:
            raise ToolExecutionFailure(f"not a photo: {', '.join(rejected)}")
        equations = await join_all(*[_call(recognize, p) for p in photos])
        sections = [
            f"{photo.render()}\n{latex}"
            for photo, latex in zip(photos, equations)
        ]
        return TextResult(content="\n\n".join(sections))

    return tool(run, name="math_ocr")
