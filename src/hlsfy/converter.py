"""
Child process entry point: ``python -m hlsfy.converter <params.json> <result.json>``.

Reads one ConversionRequest, runs the pipeline and writes the OutputMetadata.
Exit code 0 means the result file is complete; anything else is a failed job.
"""

import asyncio
import json
import logging
import sys

from hlsfy import telemetry
from hlsfy.config import get_settings
from hlsfy.log import configure_logging
from hlsfy.pipeline import ConversionPipeline
from hlsfy.schemas import ConversionRequest, OutputMetadata

logger = logging.getLogger(__name__)


def read_params(params_file: str) -> ConversionRequest:
    with open(params_file, "r", encoding="utf-8") as f:
        return ConversionRequest.model_validate(json.load(f))


def write_result(result_file: str, metadata: OutputMetadata) -> None:
    with open(result_file, "w", encoding="utf-8") as f:
        f.write(metadata.model_dump_json(by_alias=True))


def convert(params_file: str, result_file: str, pipeline=None) -> int:
    settings = get_settings()
    try:
        request = read_params(params_file)
        telemetry.set_tag("source", request.source)
        pipeline = pipeline or ConversionPipeline(settings)
        metadata = asyncio.run(pipeline.run(request))
        write_result(result_file, metadata)
    except Exception as e:
        logger.exception(f"Conversion failed: {e}")
        telemetry.capture(e)
        return 1
    return 0


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 2:
        print("usage: python -m hlsfy.converter <params.json> <result.json>", file=sys.stderr)
        return 2

    settings = get_settings()
    configure_logging(settings.log_level)
    telemetry.init_telemetry(settings.sentry_dsn, settings.environment)
    return convert(argv[0], argv[1])


if __name__ == "__main__":
    sys.exit(main())
