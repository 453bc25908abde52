from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
import hashlib
import re

app = FastAPI(title="Mock Provider Server", version="1.0.0")

USAGE_EVENTS: List[Dict[str, Any]] = []

FILLER = (
    "Careful analysis of the available evidence suggests that the question deserves more attention "
    "than it usually receives, and the details matter as much as the overall pattern."
)


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    model: str
    messages: List[ChatMessage]
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


class ScanRequest(BaseModel):
    content: str


@app.get("/health")
def health(): return {"status": "ok"}


@app.post("/v1/chat/completions")
def chat_completions(body: ChatRequest, authorization: str = Header(default="")):
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="missing bearer token")

    prompt = body.messages[-1].content
    match = re.search(r"approximately (\d+) words", prompt)
    target = int(match.group(1)) if match else 200

    words = FILLER.split()
    text = " ".join(words[i % len(words)] for i in range(target))
    return {
        "id": "mock-completion",
        "object": "chat.completion",
        "model": body.model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": text}, "finish_reason": "stop"}],
    }


@app.post("/detector/scan")
def scan(body: ScanRequest, x_oai_api_key: str = Header(default="")):
    # Deterministic low-risk scores derived from the text
    digest = int(hashlib.sha256(body.content.encode()).hexdigest(), 16)
    ai = (digest % 30) / 100
    return {
        "score": {"original": round(1 - ai / 2, 2), "ai": ai, "plagiarism": (digest % 7) / 100},
        "confidence": 0.9,
        "highlights": [],
    }


@app.post("/usage")
def usage(event: Dict[str, Any]):
    USAGE_EVENTS.append(event)
    return {"status": "recorded"}
