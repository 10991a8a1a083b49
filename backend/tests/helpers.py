"""
Shared test helpers: fake model clients and .docx template builders.

The fakes stand in for the network boundary only (Anthropic Messages, the
OpenAI-backed call_llm and embeddings); everything behind them is real.
"""

import copy
import io
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Union

import docx
from docx.oxml import parse_xml
from docx.oxml.ns import nsdecls, qn

from agents.prompts.llm import LLMResult


# ═══════════════════════════════════════════════════════════════════════════
# Anthropic Messages
# ═══════════════════════════════════════════════════════════════════════════


def _usage(input_tokens: int = 10, output_tokens: int = 5) -> SimpleNamespace:
    return SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens)


def text_response(text: str) -> SimpleNamespace:
    """A final answer with no tool calls."""
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        stop_reason="end_turn",
        usage=_usage(),
    )


def tool_use_response(
    name: str,
    tool_input: Dict[str, Any],
    tool_use_id: str = "toolu_1",
    text: str = "",
) -> SimpleNamespace:
    """A response asking for one tool call, optionally with narration."""
    content = []
    if text:
        content.append(SimpleNamespace(type="text", text=text))
    content.append(SimpleNamespace(type="tool_use", id=tool_use_id, name=name, input=tool_input))
    return SimpleNamespace(content=content, stop_reason="tool_use", usage=_usage())


Responder = Union[List[Any], Callable[[Dict[str, Any]], Any]]


class FakeAnthropic:
    """
    Minimal AsyncAnthropic stand-in.

    `responder` is either a list of responses consumed in order or a callable
    taking the request kwargs. An Exception instance is raised instead of
    returned.
    """

    def __init__(self, responder: Responder):
        self._responder = responder
        self.calls: List[Dict[str, Any]] = []
        self.messages = SimpleNamespace(create=self._create)

    async def _create(self, **kwargs):
        self.calls.append(copy.deepcopy(kwargs))
        if callable(self._responder):
            response = self._responder(kwargs)
        else:
            response = self._responder.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def by_system_prompt(script: Dict[str, List[Any]]) -> Callable[[Dict[str, Any]], Any]:
    """Responder that picks the queue whose key occurs in the request's system prompt."""
    def respond(kwargs: Dict[str, Any]):
        for marker, queue in script.items():
            if marker in kwargs["system"]:
                return queue.pop(0)
        raise AssertionError(f"No scripted response for system prompt: {kwargs['system'][:60]!r}")
    return respond


# ═══════════════════════════════════════════════════════════════════════════
# call_llm
# ═══════════════════════════════════════════════════════════════════════════


class FakeStrategyLLM:
    """
    Replacement for call_llm inside the group chat.

    Queued replies are consumed per prompt kind. An Exception in a queue
    becomes a failed LLMResult. Empty queues fall back to the defaults.
    """

    def __init__(self, default_selection: str = "", default_termination: str = "Yes"):
        self.selections: List[Any] = []
        self.terminations: List[Any] = []
        self.default_selection = default_selection
        self.default_termination = default_termination
        self.calls: List[Dict[str, Any]] = []

    async def __call__(
        self,
        system_message: str,
        user_message: str,
        values: Dict[str, Any],
        model_config=None,
        response_schema=None,
        options=None,
    ) -> LLMResult:
        kind = "selection" if "choose the next participant" in system_message else "termination"
        self.calls.append({"kind": kind, "values": dict(values)})

        queue = self.selections if kind == "selection" else self.terminations
        default = self.default_selection if kind == "selection" else self.default_termination
        reply = queue.pop(0) if queue else default

        if isinstance(reply, Exception):
            return LLMResult(input=values, error=str(reply))
        return LLMResult(input=values, data=reply)

    def kinds(self) -> List[str]:
        return [call["kind"] for call in self.calls]


def fake_call_llm(reply: Optional[str] = None, error: Optional[str] = None, recorder: Optional[list] = None):
    """A call_llm replacement that always returns the same result."""
    async def _call(system_message, user_message, values, model_config=None, response_schema=None, options=None):
        if recorder is not None:
            recorder.append({"system": system_message, "user": user_message, "values": values, "options": options})
        if error is not None:
            return LLMResult(input=values, error=error)
        return LLMResult(input=values, data=reply)
    return _call


# ═══════════════════════════════════════════════════════════════════════════
# Embeddings
# ═══════════════════════════════════════════════════════════════════════════


VOCAB = ["invoice", "payment", "refund", "weather", "holiday", "policy", "vacation", "salary"]


class FakeEmbeddings:
    """Bag-of-words vectors over a tiny vocabulary."""

    def __init__(self):
        self.calls: List[List[str]] = []

    async def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [[float(text.lower().count(word)) for word in VOCAB] for text in texts]

    async def embed_one(self, text: str) -> List[float]:
        return (await self.embed([text]))[0]


# ═══════════════════════════════════════════════════════════════════════════
# .docx templates with content controls
# ═══════════════════════════════════════════════════════════════════════════


_NS = f'{nsdecls("w")} xmlns:w14="http://schemas.microsoft.com/office/word/2010/wordml"'


def inline_control(tag: str, placeholder: str = "Click to enter") -> str:
    return (
        f'<w:sdt><w:sdtPr><w:tag w:val="{tag}"/></w:sdtPr>'
        f'<w:sdtContent><w:r><w:t>{placeholder}</w:t></w:r>'
        f'<w:r><w:t xml:space="preserve"> (second run)</w:t></w:r></w:sdtContent></w:sdt>'
    )


def checkbox_control(tag: str) -> str:
    return (
        f'<w:sdt><w:sdtPr><w:tag w:val="{tag}"/>'
        f'<w14:checkbox><w14:checked w14:val="0"/></w14:checkbox></w:sdtPr>'
        f'<w:sdtContent><w:r><w:t>☐</w:t></w:r></w:sdtContent></w:sdt>'
    )


def run(text: str) -> str:
    return f'<w:r><w:t xml:space="preserve">{text}</w:t></w:r>'


def paragraph(*inner: str) -> str:
    return f'<w:p {_NS}>{"".join(inner)}</w:p>'


def block_control(tag: str, *paragraphs_inner: str) -> str:
    """A block-level control wrapping one paragraph per inner fragment."""
    body = "".join(f"<w:p>{inner}</w:p>" for inner in paragraphs_inner)
    return f'<w:sdt {_NS}><w:sdtPr><w:tag w:val="{tag}"/></w:sdtPr><w:sdtContent>{body}</w:sdtContent></w:sdt>'


def build_docx(*body_elements: str) -> bytes:
    """A .docx whose body holds the given XML fragments, before the section properties."""
    document = docx.Document()
    body = document.element.body
    sect_pr = body.find(qn("w:sectPr"))
    for fragment in body_elements:
        element = parse_xml(fragment)
        if sect_pr is not None:
            sect_pr.addprevious(element)
        else:
            body.append(element)
    output = io.BytesIO()
    document.save(output)
    return output.getvalue()


def document_texts(docx_bytes: bytes) -> List[str]:
    """Every w:t text of the body, in order, empty ones dropped."""
    document = docx.Document(io.BytesIO(docx_bytes))
    return [t.text for t in document.element.body.iter(qn("w:t")) if t.text]


def sample_invoice_template() -> bytes:
    return build_docx(
        paragraph(run("Client: "), inline_control("client_name")),
        paragraph(run("Approved: "), checkbox_control("approved")),
        block_control(
            "items",
            inline_control("item_name"),
            inline_control("item_qty"),
        ),
        paragraph(run("Notes: "), inline_control("notes")),
    )
