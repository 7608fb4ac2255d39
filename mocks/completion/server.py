"""
Mock completion API answering in the OpenAI legacy completions format.
"""

import time
import uuid
from typing import Any, Dict, Optional
import sys
import os

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse

# Add shared directory to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.logging import get_logger


class MockCompletionServer:
    """Echoes the prompt back as a single completion choice."""

    def __init__(self, api_key: Optional[str] = None, port: int = 8090):
        self.port = port
        self.api_key = api_key
        self.logger = get_logger("mock.completion")
        self.app = FastAPI(title="Mock Completion API", version="1.0.0")
        self.requests = []

        self._setup_routes()

    def _setup_routes(self):
        """Set up mock completion routes."""

        @self.app.get("/")
        async def root():
            return {"service": "mock-completion", "status": "running"}

        @self.app.post("/v1/completions")
        async def create_completion(request: Request, authorization: Optional[str] = Header(None)):
            if self.api_key and authorization != f"Bearer {self.api_key}":
                return JSONResponse(
                    status_code=401,
                    content={"error": {"message": "Incorrect API key provided", "type": "invalid_request_error"}},
                )

            try:
                payload = await request.json()
            except ValueError:
                return JSONResponse(
                    status_code=400,
                    content={"error": {"message": "Request body is not valid JSON", "type": "invalid_request_error"}},
                )

            self.requests.append(payload)
            self.logger.info("Completion requested", model=payload.get("model"))
            return self._completion(payload)

    def _completion(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        prompt = str(payload.get("prompt", ""))
        words = prompt.split()
        max_tokens = int(payload.get("max_tokens") or 16)
        text = " ".join(words[:max_tokens])

        return {
            "id": f"cmpl-{uuid.uuid4().hex[:24]}",
            "object": "text_completion",
            "created": int(time.time()),
            "model": payload.get("model", "gpt-3.5-turbo"),
            "choices": [
                {
                    "text": text,
                    "index": 0,
                    "logprobs": None,
                    "finish_reason": "length" if len(words) > max_tokens else "stop",
                }
            ],
            "usage": {
                "prompt_tokens": len(words),
                "completion_tokens": min(len(words), max_tokens),
                "total_tokens": len(words) + min(len(words), max_tokens),
            },
        }


def create_app(api_key: Optional[str] = None):
    """Create mock completion app."""
    server = MockCompletionServer(api_key=api_key or os.getenv("MOCK_COMPLETION_API_KEY"))
    return server.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8090)
