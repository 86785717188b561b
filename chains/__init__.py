from chains.continuation import (
    build_classifier_prompts, build_continuation_prompts, build_plain_prompts,
    build_rewrite_prompts, build_opening_prompts,
    classifier_options, continuation_options, plain_options, opening_options,
    select_discipline, CONTINUATION_SCHEMA
)
from chains.knowledge import build_extraction_prompts, extraction_options
