import os
from typing import Dict, Optional
from uuid import uuid4

OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"


class OpenAIClient:
    """
    Credentials for an OpenAI-compatible chat/completions endpoint
    """

    def __init__(self, api_key: Optional[str] = None):
        self.key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.key:
            raise ValueError("OPENAI_API_KEY environment variable is not set")

    def get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {self.key}",
            "X-Request-Id": str(uuid4()),
        }
