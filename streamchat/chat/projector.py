"""Display Projector: maps message parts to renderable units."""

from dataclasses import dataclass
from typing import Any, Callable, Literal, Sequence

RenderKind = Literal["markdown", "reasoning", "image", "file", "link", "citation"]


@dataclass(frozen=True)
class RenderUnit:
    kind: RenderKind
    body: str
    url: str | None = None
    label: str | None = None
    streaming: bool = False


def _part_type(part: Any) -> str | None:
    if isinstance(part, dict):
        return part.get("type")
    return getattr(part, "type", None)


def _render_text(part: Any) -> RenderUnit:
    return RenderUnit("markdown", part.text, streaming=part.state == "streaming")


def _render_reasoning(part: Any) -> RenderUnit:
    return RenderUnit("reasoning", part.text, streaming=part.state == "streaming")


def _render_file(part: Any) -> RenderUnit:
    name = part.filename or part.url.rsplit("/", 1)[-1] or part.url
    kind: RenderKind = "image" if part.media_type.startswith("image/") else "file"
    return RenderUnit(kind, name, url=part.url, label=part.media_type)


def _render_source_url(part: Any) -> RenderUnit:
    return RenderUnit("link", part.title or part.url, url=part.url)


def _render_source_document(part: Any) -> RenderUnit:
    return RenderUnit("citation", part.title, label=part.filename)


RENDERERS: dict[str, Callable[[Any], RenderUnit]] = {
    "text": _render_text,
    "reasoning": _render_reasoning,
    "file": _render_file,
    "source-url": _render_source_url,
    "source-document": _render_source_document,
}


class DisplayProjector:
    """
    Projects one message's parts. Units for closed parts are kept per
    position and handed back as-is on the next projection, so a re-render
    during streaming only derives the open tail part again.
    """

    def __init__(self) -> None:
        self._cache: dict[int, tuple[Any, RenderUnit | None]] = {}
        self.derived = 0

    def _derive(self, part: Any) -> RenderUnit | None:
        renderer = RENDERERS.get(_part_type(part))  # type: ignore[arg-type]
        self.derived += 1
        # unknown part types render as nothing
        return renderer(part) if renderer else None

    def project(self, parts: Sequence[Any]) -> list[RenderUnit]:
        units: list[RenderUnit] = []
        for index, part in enumerate(parts):
            cached = self._cache.get(index)
            if cached is not None and (cached[0] is part or cached[0] == part):
                unit = cached[1]
            else:
                unit = self._derive(part)
                if getattr(part, "state", "done") == "done":
                    self._cache[index] = (part, unit)
            if unit is not None:
                units.append(unit)
        return units

    def reset(self) -> None:
        self._cache.clear()
