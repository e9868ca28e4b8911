"""
Basic usage example for the Thematic Analyzer package.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

SAMPLE_SOURCES = [
    {
        "id": "vid01",
        "content_type": "video_transcript",
        "content": (
            "Working from home gave me flexibility, but the boundary between home and office "
            "disappeared. I answer messages late at night and rarely switch off."
        ),
    },
    {
        "id": "vid02",
        "content_type": "video_transcript",
        "content": (
            "The commute used to be my time to decompress. Without it, remote work days blur "
            "together and I feel exhausted by the constant video calls."
        ),
    },
    {
        "id": "vid03",
        "content_type": "video_transcript",
        "content": (
            "Hybrid schedules help our team. We meet in the office for planning and keep "
            "focus work at home, which cut my commute stress."
        ),
    },
    {
        "id": "abs01",
        "content_type": "abstract",
        "title": "Telework and wellbeing",
        "content": (
            "We surveyed 400 employees on telework. Flexibility improved satisfaction while "
            "blurred boundaries between home and work predicted exhaustion."
        ),
    },
]


def main():
    """Demonstrate basic usage of the Thematic Analyzer."""
    from thematic_analyzer import (
        EmbeddingProvider,
        ExtractionConfig,
        HashingEmbeddingBackend,
        OpenAICompletion,
        OpenAIEmbeddingBackend,
        ThemeExtractionPipeline,
    )
    from thematic_analyzer.strategies import SurveyConstructionStrategy
    from thematic_analyzer.utils.file_io import save_result

    config = ExtractionConfig(saturation_permutations=20)

    # Fall back to the offline hashing backend without an API key
    if os.getenv("OPENAI_API_KEY"):
        print("Using OpenAI embeddings and labels.")
        backend = OpenAIEmbeddingBackend(model=config.embedding_model)
        complete = OpenAICompletion(model=config.labeling_model)
    else:
        print("OPENAI_API_KEY not set; using local embeddings and fallback labels.")
        backend = HashingEmbeddingBackend()
        complete = None

    output_dir = Path("output")
    output_dir.mkdir(exist_ok=True)

    print("Step 1: Extracting themes...")
    provider = EmbeddingProvider.from_config(backend, config)
    pipeline = ThemeExtractionPipeline(
        provider,
        complete=complete,
        config=config,
        strategies=[SurveyConstructionStrategy()],
    )
    result = pipeline.run(SAMPLE_SOURCES)

    print(f"\nStep 2: {len(result.themes)} themes found")
    for theme in result.themes:
        print(f"  - {theme.label}: {theme.size} codes from {len(theme.source_ids)} sources")
    for record in result.skipped:
        print(f"  skipped {record.unit_id} ({record.stage}): {record.reason}")

    print(f"\nSaturation: {result.saturation['recommendation']}")

    output_file = output_dir / "themes.json"
    save_result(result, str(output_file))
    print(f"\nAll done! Results saved to {output_file}")


if __name__ == "__main__":
    main()
