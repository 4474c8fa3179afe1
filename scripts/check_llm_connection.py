"""
Check the configured text-completion providers (Gemini, Groq, OpenAI).
Run: python -m scripts.check_llm_connection (from the project root, with .env set).
"""
import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from services.errors import CompletionError
from services.llm import LLMCompletionClient


async def main() -> bool:
    client = LLMCompletionClient(settings, max_output_tokens=50)
    if not client.available:
        print("❌ No provider API key found (GEMINI_API_KEY / GROQ_API_KEY / OPENAI_API_KEY)")
        return False
    print(f"✓ Provider order: {', '.join(settings.provider_order)}")
    try:
        reply = await client.complete(
            "You are a connectivity check.",
            "Say 'Connection successful!' if you can read this.",
        )
    except CompletionError as e:
        print(f"❌ All providers failed: {e}")
        return False
    print(f"✅ Response: {reply}")
    return True


if __name__ == "__main__":
    sys.exit(0 if asyncio.run(main()) else 1)
