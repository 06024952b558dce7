"""
Vision Model Package

Narrow client over the OpenAI vision chat model (via langchain) used by the
classification and extraction stages.

Public API::

    from careify.llm import VisionModelClient

    client = VisionModelClient()
    raw_json = await client.call(prompt, image_bytes, "image/png", instruction="...")
"""

from careify.llm.gateway import VisionClient, VisionModelClient

__all__ = [
    "VisionClient",
    "VisionModelClient",
]
