# ABOUTME: Validates decoded model payloads against JSON schemas and per-shape invariant checks.
# ABOUTME: Produces deterministic error lists that drive corrective retries in the structured loop.

from __future__ import annotations

from typing import Any, Callable

from deckforge.runtime.contracts import SLIDE_TYPES


PayloadValidator = Callable[[Any], list[str]]

ALLOWED_REVIEW_VERDICTS = {"PASS", "NEEDS_SPLIT"}
ALLOWED_ISSUE_SEVERITIES = {"warning", "error"}
ALLOWED_STYLE_VERDICTS = {"PASS", "NEEDS_FIX"}
ALLOWED_FACT_VERDICTS = {"VERIFIED", "NEEDS_REVIEW", "HAS_ERRORS"}
ALLOWED_CLAIM_STATUSES = {"verified", "unverified", "contradicted", "vague"}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _matches_type(value: Any, schema_type: str) -> bool:
    if schema_type == "object":
        return isinstance(value, dict)
    if schema_type == "array":
        return isinstance(value, list)
    if schema_type == "string":
        return isinstance(value, str)
    if schema_type == "number":
        return _is_number(value)
    if schema_type == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if schema_type == "boolean":
        return isinstance(value, bool)
    if schema_type == "null":
        return value is None
    return True


def validate_payload(value: Any, schema: dict[str, Any], *, path: str = "$") -> list[str]:
    errors: list[str] = []
    schema_type = schema.get("type")
    if isinstance(schema_type, list):
        if not any(_matches_type(value, item) for item in schema_type if isinstance(item, str)):
            return [f"{path} must be one of types {schema_type}."]
        schema_type = next(
            (item for item in schema_type if isinstance(item, str) and _matches_type(value, item)),
            None,
        )
    elif isinstance(schema_type, str) and not _matches_type(value, schema_type):
        return [f"{path} must be type {schema_type}."]

    enum_values = schema.get("enum")
    if isinstance(enum_values, list) and value not in enum_values:
        errors.append(f"{path} must be one of {enum_values}.")

    if schema_type == "object" and isinstance(value, dict):
        required = schema.get("required")
        if isinstance(required, list):
            for field_name in required:
                if isinstance(field_name, str) and field_name not in value:
                    errors.append(f"{path}.{field_name} is required.")
        properties = schema.get("properties")
        if isinstance(properties, dict):
            for field_name, field_schema in properties.items():
                if field_name in value and isinstance(field_schema, dict):
                    errors.extend(
                        validate_payload(value[field_name], field_schema, path=f"{path}.{field_name}")
                    )
            if schema.get("additionalProperties") is False:
                for field_name in value:
                    if field_name not in properties:
                        errors.append(f"{path}.{field_name} is not allowed.")

    if schema_type == "array" and isinstance(value, list):
        min_items = schema.get("minItems")
        max_items = schema.get("maxItems")
        if isinstance(min_items, int) and len(value) < min_items:
            errors.append(f"{path} must have at least {min_items} items.")
        if isinstance(max_items, int) and len(value) > max_items:
            errors.append(f"{path} must have at most {max_items} items.")
        item_schema = schema.get("items")
        if isinstance(item_schema, dict):
            for index, item in enumerate(value):
                errors.extend(validate_payload(item, item_schema, path=f"{path}[{index}]"))

    if schema_type == "string" and isinstance(value, str):
        min_length = schema.get("minLength")
        if isinstance(min_length, int) and len(value.strip()) < min_length:
            errors.append(f"{path} must have minLength {min_length}.")

    if schema_type in {"number", "integer"} and _is_number(value):
        minimum = schema.get("minimum")
        maximum = schema.get("maximum")
        if _is_number(minimum) and float(value) < float(minimum):
            errors.append(f"{path} must be >= {minimum}.")
        if _is_number(maximum) and float(value) > float(maximum):
            errors.append(f"{path} must be <= {maximum}.")
    return errors


def schema_validator(schema: dict[str, Any], *checks: PayloadValidator) -> PayloadValidator:
    """Run the schema first; invariant checks only see payloads that decode cleanly."""

    def _validate(payload: Any) -> list[str]:
        errors = validate_payload(payload, schema)
        if errors:
            return errors
        for check in checks:
            errors.extend(check(payload))
        return errors

    return _validate


def check_outline(payload: dict[str, Any], *, min_slides: int, max_slides: int) -> list[str]:
    errors: list[str] = []
    if not _is_non_empty_string(payload.get("title")):
        errors.append("title must be a non-empty string.")
    slides = payload.get("slides")
    if not isinstance(slides, list):
        return errors + ["slides must be a list."]
    if not min_slides <= len(slides) <= max_slides:
        errors.append(f"slides must contain between {min_slides} and {max_slides} entries, got {len(slides)}.")
    for index, slide in enumerate(slides):
        errors.extend(check_outline_slide(slide, path=f"slides[{index}]", expected_number=index + 1))
    if slides and isinstance(slides[0], dict) and slides[0].get("slideType") != "TITLE":
        errors.append("slides[0].slideType must be TITLE.")
    if len(slides) > 1 and isinstance(slides[-1], dict) and slides[-1].get("slideType") != "CTA":
        errors.append(f"slides[{len(slides) - 1}].slideType must be CTA.")
    return errors


def check_outline_slide(slide: Any, *, path: str = "$", expected_number: int | None = None) -> list[str]:
    if not isinstance(slide, dict):
        return [f"{path} must be an object."]
    errors: list[str] = []
    number = slide.get("slideNumber")
    if not isinstance(number, int) or isinstance(number, bool):
        errors.append(f"{path}.slideNumber must be an integer.")
    elif expected_number is not None and number != expected_number:
        errors.append(f"{path}.slideNumber must be {expected_number}.")
    if not _is_non_empty_string(slide.get("title")):
        errors.append(f"{path}.title must be a non-empty string.")
    bullets = slide.get("bulletPoints")
    if not isinstance(bullets, list) or not all(isinstance(item, str) for item in bullets):
        errors.append(f"{path}.bulletPoints must be a list of strings.")
    if slide.get("slideType") not in SLIDE_TYPES:
        errors.append(f"{path}.slideType must be one of {list(SLIDE_TYPES)}.")
    return errors


def check_slide_content(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if not _is_non_empty_string(payload.get("title")):
        errors.append("title must be a non-empty string.")
    if not isinstance(payload.get("body"), str):
        errors.append("body must be a string.")
    notes = payload.get("speakerNotes")
    if notes is not None and not isinstance(notes, str):
        errors.append("speakerNotes must be a string when present.")
    return errors


def check_review_result(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    verdict = payload.get("verdict")
    if verdict not in ALLOWED_REVIEW_VERDICTS:
        errors.append(f"verdict must be one of {sorted(ALLOWED_REVIEW_VERDICTS)}.")
    score = payload.get("score")
    if not _is_number(score) or not 0.0 <= float(score) <= 1.0:
        errors.append("score must be a number between 0 and 1.")
    issues = payload.get("issues")
    if not isinstance(issues, list):
        errors.append("issues must be a list.")
    else:
        for index, issue in enumerate(issues):
            if not isinstance(issue, dict):
                errors.append(f"issues[{index}] must be an object.")
                continue
            if not isinstance(issue.get("rule"), str):
                errors.append(f"issues[{index}].rule must be a string.")
            if issue.get("severity") not in ALLOWED_ISSUE_SEVERITIES:
                errors.append(f"issues[{index}].severity must be warning or error.")
            if not isinstance(issue.get("message"), str):
                errors.append(f"issues[{index}].message must be a string.")
    if verdict == "NEEDS_SPLIT":
        splits = payload.get("suggestedSplits")
        if not isinstance(splits, list) or len(splits) < 2:
            errors.append("suggestedSplits must contain at least two parts when verdict is NEEDS_SPLIT.")
        else:
            for index, part in enumerate(splits):
                if not isinstance(part, dict) or not _is_non_empty_string(part.get("title")):
                    errors.append(f"suggestedSplits[{index}].title must be a non-empty string.")
                elif not isinstance(part.get("body"), str):
                    errors.append(f"suggestedSplits[{index}].body must be a string.")
    return errors


def check_style_result(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if payload.get("verdict") not in ALLOWED_STYLE_VERDICTS:
        errors.append(f"verdict must be one of {sorted(ALLOWED_STYLE_VERDICTS)}.")
    score = payload.get("score")
    if not _is_number(score) or not 0.0 <= float(score) <= 1.0:
        errors.append("score must be a number between 0 and 1.")
    if not isinstance(payload.get("issues"), list):
        errors.append("issues must be a list.")
    for key in ("rewrittenTitle", "rewrittenBody"):
        value = payload.get(key)
        if value is not None and not isinstance(value, str):
            errors.append(f"{key} must be a string or null.")
    return errors


def check_fact_result(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if payload.get("verdict") not in ALLOWED_FACT_VERDICTS:
        errors.append(f"verdict must be one of {sorted(ALLOWED_FACT_VERDICTS)}.")
    score = payload.get("score")
    if not _is_number(score) or not 0.0 <= float(score) <= 1.0:
        errors.append("score must be a number between 0 and 1.")
    claims = payload.get("claims")
    if not isinstance(claims, list):
        return errors + ["claims must be a list."]
    for index, claim in enumerate(claims):
        if not isinstance(claim, dict):
            errors.append(f"claims[{index}] must be an object.")
            continue
        if not isinstance(claim.get("claim"), str):
            errors.append(f"claims[{index}].claim must be a string.")
        if claim.get("status") not in ALLOWED_CLAIM_STATUSES:
            errors.append(f"claims[{index}].status must be one of {sorted(ALLOWED_CLAIM_STATUSES)}.")
    return errors


def check_narrative_result(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    score = payload.get("overallScore")
    if not _is_number(score) or not 0.0 <= float(score) <= 1.0:
        errors.append("overallScore must be a number between 0 and 1.")
    if not isinstance(payload.get("arcAssessment"), str):
        errors.append("arcAssessment must be a string.")
    if not isinstance(payload.get("issues"), list):
        errors.append("issues must be a list.")
    return errors
