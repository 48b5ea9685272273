"""Ordered stage chains for outgoing requests and successful responses.

A stage is a plain function, sync or async, accepting either ``(item)`` or
``(item, context)``. It returns the (possibly mutated) item to continue, or a
``ClassifiedError`` to stop the chain; the driver hands that failure back to its
caller instead of raising, so an expected signal such as "refresh in progress"
is not confused with a fault.
"""

import inspect
import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Callable, Sequence, Union

from .errors import ClassifiedError
from .stores import Connectivity, CredentialStore, PreferenceStore
from .tokens import token_expiry
from .types import HeaderConfig, RequestDescriptor, ResponseContext

# stage(item, context); also assumed for callables without a readable signature
STAGE_WITH_CONTEXT_ARGC = 2

URL_PLACEHOLDER = re.compile(r"\{(\w+)\}")

logger = logging.getLogger("turnstile")


def _stage_arity(stage: Callable) -> int:
    """How many positional arguments a stage takes (item, or item and context)."""
    try:
        params = inspect.signature(stage).parameters.values()
    except (TypeError, ValueError):
        # builtins and some C callables have no signature
        return STAGE_WITH_CONTEXT_ARGC
    positional = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    return sum(1 for p in params if p.kind in positional)


@dataclass
class PipelineContext:
    credentials: CredentialStore
    preferences: PreferenceStore
    connectivity: Connectivity
    headers: HeaderConfig = field(default_factory=HeaderConfig)
    is_refreshing: Callable[[], bool] = lambda: False


class Pipeline:
    """Runs stages in order; the first ClassifiedError short-circuits the rest."""

    def __init__(self, stages: Sequence[Callable], context: PipelineContext):
        self.stages = list(stages)
        self.context = context

    async def _call(self, stage: Callable, item):
        if _stage_arity(stage) >= STAGE_WITH_CONTEXT_ARGC:
            result = stage(item, self.context)
        else:
            result = stage(item)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def process(self, item):
        for stage in self.stages:
            result = await self._call(stage, item)
            if isinstance(result, ClassifiedError):
                logger.debug(
                    f"stage {getattr(stage, '__name__', stage)!s} stopped the pipeline: "
                    f"{result.kind.value}"
                )
                return result
            if result is None or not isinstance(result, type(item)):
                raise TypeError(
                    f"pipeline stage {getattr(stage, '__name__', stage)!s} must return "
                    f"{type(item).__name__} or ClassifiedError, got {type(result).__name__}"
                )
            item = result
        return item


class RequestPipeline(Pipeline):
    async def process(
        self, descriptor: RequestDescriptor
    ) -> Union[RequestDescriptor, ClassifiedError]:
        return await super().process(descriptor)


class ResponsePipeline(Pipeline):
    async def process(self, context: ResponseContext) -> Union[ResponseContext, ClassifiedError]:
        return await super().process(context)


# ---------- request stages ----------


def check_connectivity(descriptor: RequestDescriptor, ctx: PipelineContext):
    if not ctx.connectivity.is_online():
        return ClassifiedError.offline(descriptor)
    return descriptor


def check_refreshing(descriptor: RequestDescriptor, ctx: PipelineContext):
    # Replays skip this check, otherwise new requests could overtake queued ones
    if ctx.is_refreshing() and not descriptor.is_retry:
        return ClassifiedError.refresh_in_progress(descriptor)
    return descriptor


async def check_auth_precondition(descriptor: RequestDescriptor, ctx: PipelineContext):
    if not descriptor.needs_auth:
        return descriptor
    if not await ctx.credentials.get(ctx.headers.access_key):
        return ClassifiedError.unauthorized(descriptor=descriptor)
    return descriptor


def expand_url_template(descriptor: RequestDescriptor):
    """Fill ``{name}`` placeholders in the url from the same-named body fields."""
    if descriptor.is_preprocessed or not isinstance(descriptor.body, dict):
        return descriptor
    body = descriptor.body
    used: set[str] = set()

    def _sub(match: re.Match) -> str:
        name = match.group(1)
        if name not in body:
            return match.group(0)
        used.add(name)
        return str(body[name])

    descriptor.url = URL_PLACEHOLDER.sub(_sub, descriptor.url)
    if used and not descriptor.keep_url_params:
        descriptor.body = {k: v for k, v in body.items() if k not in used}
    return descriptor


def route_params(descriptor: RequestDescriptor):
    """Write methods send a body; everything else sends the body as query params."""
    if descriptor.is_preprocessed:
        return descriptor
    if descriptor.is_write:
        descriptor.params = None
    else:
        body = descriptor.body
        if body is not None and not isinstance(body, Mapping):
            raise TypeError(
                f"{descriptor.method} {descriptor.url}: body must be a mapping of query "
                f"parameters, got {type(body).__name__}"
            )
        if body is not None:
            descriptor.params = {**(descriptor.params or {}), **body}
        descriptor.body = None
    descriptor.is_preprocessed = True
    return descriptor


async def set_preference_headers(descriptor: RequestDescriptor, ctx: PipelineContext):
    hc = ctx.headers
    currency = await ctx.preferences.get(hc.currency_key)
    if currency:
        descriptor.headers[hc.currency_header] = currency
    language = await ctx.preferences.get(hc.language_key)
    if language:
        descriptor.headers[hc.locale_header] = language
    return descriptor


async def set_access_token(descriptor: RequestDescriptor, ctx: PipelineContext):
    token = await ctx.credentials.get(ctx.headers.access_key)
    if token:
        descriptor.headers[ctx.headers.access_header] = token
    return descriptor


DEFAULT_REQUEST_STAGES = (
    check_connectivity,
    check_refreshing,
    check_auth_precondition,
    expand_url_template,
    route_params,
    set_preference_headers,
    set_access_token,
)


# ---------- response stages ----------


async def update_auth(context: ResponseContext, ctx: PipelineContext):
    """Persist tokens the server rotated on an ordinary response."""
    hc = ctx.headers
    access = context.response.header(hc.access_header)
    refresh = context.response.header(hc.refresh_header)
    if access and refresh:
        await ctx.credentials.set(hc.access_key, access)
        await ctx.credentials.set(hc.refresh_key, refresh, expires=token_expiry(refresh))
        logger.debug("stored rotated tokens from response headers")
    return context


def _is_json(content_type: str) -> bool:
    media = content_type.split(";", 1)[0].strip().lower()
    return media == "application/json" or media.endswith("+json")


def decode_body(context: ResponseContext):
    """JSON is parsed, text decoded; binary payloads return the whole response."""
    response = context.response
    content_type = response.content_type or ""
    if not response.content:
        context.data = None
    elif _is_json(content_type):
        try:
            context.data = json.loads(response.content)
        except ValueError as e:
            logger.warning(f"response declared JSON but could not be parsed: {e}")
            context.data = response
    elif content_type.lower().startswith("text/"):
        context.data = response.content.decode("utf-8", errors="replace")
    else:
        context.data = response
    return context


DEFAULT_RESPONSE_STAGES = (update_auth, decode_body)


def build_request_pipeline(
    context: PipelineContext, stages: Union[Sequence[Callable], None] = None
) -> RequestPipeline:
    return RequestPipeline(DEFAULT_REQUEST_STAGES if stages is None else stages, context)


def build_response_pipeline(
    context: PipelineContext, stages: Union[Sequence[Callable], None] = None
) -> ResponsePipeline:
    return ResponsePipeline(DEFAULT_RESPONSE_STAGES if stages is None else stages, context)


def coerce_stages(stages: Union[Sequence[Callable], Callable, None]) -> Union[list, None]:
    """Turn None | callable | sequence of callables into a stage list (None keeps defaults)."""
    if stages is None:
        return None
    if callable(stages):
        return [stages]
    stage_list = list(stages)
    for s in stage_list:
        if not callable(s):
            raise TypeError(f"pipeline stage must be callable, got {type(s).__name__}")
    return stage_list
