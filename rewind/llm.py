"""Generation providers: abortable, callback-driven text completion."""
import asyncio
import inspect
import logging
from typing import Any, Callable

from pattern import response_format_instructions
from .config import config
from .errors import CancelledError, ProviderError
from .messages import LOCAL, SYSTEM, MessageLog, describe_message
from .numbering import build_number_map, number_lines
from .parser import ResponseParser, check_response_format

logger = logging.getLogger(__name__)

MessageFunc = Callable[[dict], Any]
CompleteFunc = Callable[[], Any]
ErrorFunc = Callable[[ProviderError], Any]
RawFunc = Callable[[str], Any]

_CHAT_ROLES = {LOCAL: "user", SYSTEM: "system"}


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class GenerationHandle:
    """Returned by invoke(). abort() stops further deliveries."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        self.cancel_event = asyncio.Event()
        self.task: asyncio.Task | None = None

    def abort(self) -> None:
        if not self.cancel_event.is_set():
            logger.info(f"Aborting generation for {self.conversation_id}")
            self.cancel_event.set()

    @property
    def aborted(self) -> bool:
        return self.cancel_event.is_set()

    def done(self) -> bool:
        return self.task is not None and self.task.done()

    async def wait(self) -> None:
        if self.task is not None:
            await self.task


class GenerationProvider:
    """Subclasses implement generate() and parse(); invoke() handles callbacks and abort."""

    async def generate(self, conversation_id: str, pending: dict, cancel_event: asyncio.Event) -> str:
        raise NotImplementedError

    def parse(self, raw_text: str, conversation_id: str) -> list[dict]:
        raise NotImplementedError

    def invoke(
        self,
        conversation_id: str,
        pending: dict,
        on_message: MessageFunc,
        on_complete: CompleteFunc,
        on_error: ErrorFunc,
        on_raw: RawFunc | None = None,
    ) -> GenerationHandle:
        handle = GenerationHandle(conversation_id)
        handle.task = asyncio.get_running_loop().create_task(
            self._drive(handle, pending, on_message, on_complete, on_error, on_raw)
        )
        return handle

    async def _generate_or_abort(self, handle: GenerationHandle, pending: dict) -> str:
        gen_task = asyncio.ensure_future(self.generate(handle.conversation_id, pending, handle.cancel_event))
        cancel_task = asyncio.ensure_future(handle.cancel_event.wait())
        try:
            await asyncio.wait({gen_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()
        if handle.aborted:
            gen_task.cancel()
            try:
                await gen_task
            except asyncio.CancelledError: pass
            except Exception as e:
                logger.debug(f"Generation task ended with {e!r} after abort")
            raise CancelledError("Generation aborted")
        return gen_task.result()

    async def _drive(self, handle, pending, on_message, on_complete, on_error, on_raw) -> None:
        conversation_id = handle.conversation_id
        raw_recorded = False
        try:
            raw_text = await self._generate_or_abort(handle, pending)
            if not raw_text:
                raise ProviderError("Provider returned an empty response")
            if on_raw:
                await _maybe_await(on_raw(raw_text))
                raw_recorded = True

            messages = self.parse(raw_text, conversation_id)
            if not messages:
                raise ProviderError("Response contained no valid messages")

            for msg in messages:
                if handle.aborted:
                    raise CancelledError("Generation aborted")
                await _maybe_await(on_message(msg))

            if handle.aborted:
                raise CancelledError("Generation aborted")
            logger.info(f"Generation for {conversation_id} delivered {len(messages)} message(s)")
            await _maybe_await(on_complete())

        except CancelledError as e:
            logger.info(f"Generation for {conversation_id} cancelled")
            await _maybe_await(on_error(e))
        except ProviderError as e:
            logger.error(f"Generation for {conversation_id} failed: {e}")
            if on_raw and not raw_recorded:
                await _maybe_await(on_raw(f"Error: {e}"))
            await _maybe_await(on_error(e))
        except Exception as e:
            logger.exception(f"Error during generation for {conversation_id}: {e}")
            err = ProviderError(str(e))
            if on_raw and not raw_recorded:
                await _maybe_await(on_raw(f"Error: {e}"))
            await _maybe_await(on_error(err))


def _create_openai_client():
    from openai import AsyncOpenAI
    return AsyncOpenAI(base_url=config.api_base_url, api_key=config.api_key)


def build_system_message(display_name: str | None = None) -> str:
    msg = "You are chatting inside a phone messaging app. Stay in character.\n\n"
    msg += response_format_instructions
    if display_name:
        msg += f"\n\nUse the character name '{display_name}'."
    msg += "\nEarlier messages are numbered like #3; quote them by that number."
    if config.extra_system_prompt:
        msg += f"\n\n=== Custom Instructions ===\n{config.extra_system_prompt}"
    return msg


class OpenAIProvider(GenerationProvider):
    """OpenAI-compatible chat completion backend using the default tag format."""

    def __init__(self, log: MessageLog, parser: ResponseParser | None = None, client_factory=None,
                 display_names: dict[str, str] | None = None):
        self.log = log
        self.parser = parser or ResponseParser(log)
        self.client_factory = client_factory or _create_openai_client
        self.display_names = display_names or {}
        self._number_maps: dict[str, dict[int, str]] = {}

    def build_messages(self, conversation_id: str, pending: dict) -> list[dict]:
        history = self.log.load(conversation_id)
        self._number_maps[conversation_id] = build_number_map(history)

        messages = [{"role": "system", "content": build_system_message(self.display_names.get(conversation_id))}]
        for number, entry in number_lines(history):
            prefix = f"#{number} " if number is not None else ""
            role = _CHAT_ROLES.get(entry.get("sender"), "assistant")
            messages.append({"role": role, "content": f"{prefix}{describe_message(entry)}"})

        # Local messages are logged as they are typed; only unlogged pending items go in again
        logged_ids = {e.get("id") for e in history if e.get("id")}
        pending_lines = []
        for other_id, items in (pending or {}).items():
            for item in items:
                if item.get("id") in logged_ids:
                    continue
                if other_id == conversation_id:
                    pending_lines.append(item.get("content", ""))
                else:
                    pending_lines.append(f"(to {other_id}) {item.get('content', '')}")
        if pending_lines:
            messages.append({"role": "user", "content": "\n".join(pending_lines)})
        return messages

    async def generate(self, conversation_id: str, pending: dict, cancel_event: asyncio.Event) -> str:
        client = self.client_factory()
        messages = self.build_messages(conversation_id, pending)
        logger.info(f"Generating with model: {config.model} ({len(messages)} messages)")

        if not config.stream:
            response = await client.chat.completions.create(model=config.model, messages=messages)
            if not response.choices:
                return ""
            return response.choices[0].message.content or ""

        stream = await client.chat.completions.create(model=config.model, messages=messages, stream=True)
        full_result = ""
        async for chunk in stream:
            if cancel_event.is_set():
                logger.info("Generation cancelled by user")
                raise CancelledError("Cancelled by user")
            if not chunk.choices: continue
            content = chunk.choices[0].delta.content
            if content:
                full_result += content
        return full_result

    def parse(self, raw_text: str, conversation_id: str) -> list[dict]:
        problems = check_response_format(raw_text)
        if problems:
            raise ProviderError("Malformed response: " + "; ".join(problems))
        number_map = self._number_maps.pop(conversation_id, None)
        if number_map is None:
            number_map = build_number_map(self.log.load(conversation_id))
        return self.parser.parse(raw_text, conversation_id, number_map)
