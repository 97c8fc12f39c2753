"""LangChain chains for question structuring, counting, repair and answer keys."""

import json

import structlog
from langchain_core.language_models import BaseLLM
from langchain_core.output_parsers import JsonOutputParser, StrOutputParser
from langchain_core.prompts import ChatPromptTemplate

from qbank_pipeline.config.prompts import (
    ANSWER_KEY_SYSTEM_PROMPT,
    ANSWER_KEY_USER_PROMPT,
    QUESTION_COUNT_PROMPT,
    RANGE_STRUCTURING_USER_PROMPT,
    REPAIR_SYSTEM_PROMPT,
    REPAIR_USER_PROMPT,
    STRUCTURING_SYSTEM_PROMPT,
    STRUCTURING_USER_PROMPT,
)

from .parsing import LLMResponseParseError, parse_count, parse_json_array, parse_json_object
from .retry import LLMEmptyResponseError

logger = structlog.get_logger(__name__)


class LLMChainError(Exception):
    """Error during LLM chain execution."""

    pass


def _model_name(llm: BaseLLM) -> str:
    return getattr(llm, "model", None) or type(llm).__name__


async def _ainvoke_with_fallback(
    prompt: ChatPromptTemplate,
    variables: dict,
    llm: BaseLLM,
    fallback_llm: BaseLLM | None = None,
    context_name: str = "chain",
) -> tuple[str, str]:
    """Invoke a chain, retrying once on the fallback model if the primary returns nothing.

    Returns:
        Tuple of (response_text, model_used).

    Raises:
        LLMEmptyResponseError: If every configured model returned an empty response.
    """
    primary_model = _model_name(llm)
    chain = prompt | llm | StrOutputParser()

    logger.debug(f"{context_name}_trying_primary", model=primary_model)
    response = await chain.ainvoke(variables)

    if response and response.strip():
        logger.debug(f"{context_name}_primary_success", model=primary_model, length=len(response))
        return response, primary_model

    if fallback_llm is None:
        raise LLMEmptyResponseError(f"Model {primary_model} returned an empty response")

    fallback_model = _model_name(fallback_llm)
    logger.warning(
        f"{context_name}_primary_empty_trying_fallback",
        primary_model=primary_model,
        fallback_model=fallback_model,
    )

    chain_fallback = prompt | fallback_llm | StrOutputParser()
    response = await chain_fallback.ainvoke(variables)

    if response and response.strip():
        logger.info(f"{context_name}_fallback_success", model=fallback_model, length=len(response))
        return response, fallback_model

    raise LLMEmptyResponseError(
        f"Both primary ({primary_model}) and fallback ({fallback_model}) returned empty responses"
    )


async def run_structuring_chain(
    chunk_text: str,
    chunk_index: int,
    total_chunks: int,
    llm: BaseLLM,
    fallback_llm: BaseLLM | None = None,
) -> list[dict]:
    """Extract question dicts from one chunk of exam text.

    Raises:
        LLMEmptyResponseError: On empty responses.
        LLMResponseParseError: If no JSON array can be recovered.
    """
    prompt = ChatPromptTemplate.from_messages([
        ("system", STRUCTURING_SYSTEM_PROMPT),
        ("human", STRUCTURING_USER_PROMPT),
    ])

    logger.debug("running_structuring", chunk_index=chunk_index, text_length=len(chunk_text))

    response, model_used = await _ainvoke_with_fallback(
        prompt=prompt,
        variables={
            "chunk_text": chunk_text,
            # 1-based in the prompt
            "chunk_index": chunk_index + 1,
            "total_chunks": total_chunks,
        },
        llm=llm,
        fallback_llm=fallback_llm,
        context_name="structuring",
    )

    items = parse_json_array(response)
    logger.debug(
        "structuring_chain_complete",
        chunk_index=chunk_index,
        model_used=model_used,
        items_found=len(items),
    )
    return items


async def run_range_structuring_chain(
    text: str,
    start: int,
    end: int,
    llm: BaseLLM,
    fallback_llm: BaseLLM | None = None,
) -> list[dict]:
    """Extract questions numbered ``start``..``end`` from the full text."""
    prompt = ChatPromptTemplate.from_messages([
        ("system", STRUCTURING_SYSTEM_PROMPT),
        ("human", RANGE_STRUCTURING_USER_PROMPT),
    ])

    response, model_used = await _ainvoke_with_fallback(
        prompt=prompt,
        variables={"text": text, "start": start, "end": end},
        llm=llm,
        fallback_llm=fallback_llm,
        context_name="range_structuring",
    )

    items = parse_json_array(response)
    logger.debug(
        "range_structuring_complete",
        start=start,
        end=end,
        model_used=model_used,
        items_found=len(items),
    )
    return items


async def run_count_chain(
    text: str,
    llm: BaseLLM,
    fallback_llm: BaseLLM | None = None,
) -> int:
    """Ask the model how many questions the text holds."""
    prompt = ChatPromptTemplate.from_messages([("human", QUESTION_COUNT_PROMPT)])

    response, _ = await _ainvoke_with_fallback(
        prompt=prompt,
        variables={"text": text},
        llm=llm,
        fallback_llm=fallback_llm,
        context_name="question_count",
    )
    return parse_count(response)


async def run_repair_chain(
    items: list[dict],
    context: str,
    llm: BaseLLM,
    fallback_llm: BaseLLM | None = None,
) -> list[dict]:
    """Ask the model to fix a batch of defective questions.

    Returns:
        The ``fixed_questions`` list, each item carrying the input ``index``.
    """
    json_parser = JsonOutputParser()

    prompt = ChatPromptTemplate.from_messages([
        ("system", REPAIR_SYSTEM_PROMPT),
        ("human", REPAIR_USER_PROMPT),
    ])

    response, model_used = await _ainvoke_with_fallback(
        prompt=prompt,
        variables={
            "context": context or "(no context available)",
            "questions_json": json.dumps(items, ensure_ascii=False, indent=2),
        },
        llm=llm,
        fallback_llm=fallback_llm,
        context_name="repair",
    )

    try:
        result = json_parser.parse(response)
    except Exception as e:
        logger.debug("json_parser_failed", error=str(e))
        result = parse_json_object(response)

    if isinstance(result, list):
        fixed = result
    elif isinstance(result, dict) and isinstance(result.get("fixed_questions"), list):
        fixed = result["fixed_questions"]
    else:
        raise LLMResponseParseError("Repair response has no fixed_questions array")

    logger.debug("repair_chain_complete", model_used=model_used, items_returned=len(fixed))
    return [item for item in fixed if isinstance(item, dict)]


async def run_answer_key_chain(
    items: list[dict],
    llm: BaseLLM,
    fallback_llm: BaseLLM | None = None,
) -> list[dict]:
    """Ask the model for the correct alternative of a batch of questions.

    Returns:
        The ``answers`` list, each item carrying the input ``index``.
    """
    prompt = ChatPromptTemplate.from_messages([
        ("system", ANSWER_KEY_SYSTEM_PROMPT),
        ("human", ANSWER_KEY_USER_PROMPT),
    ])

    response, model_used = await _ainvoke_with_fallback(
        prompt=prompt,
        variables={"questions_json": json.dumps(items, ensure_ascii=False, indent=2)},
        llm=llm,
        fallback_llm=fallback_llm,
        context_name="answer_key",
    )

    try:
        result = JsonOutputParser().parse(response)
    except Exception as e:
        logger.debug("json_parser_failed", error=str(e))
        result = parse_json_object(response)

    if isinstance(result, list):
        answers = result
    elif isinstance(result, dict) and isinstance(result.get("answers"), list):
        answers = result["answers"]
    else:
        raise LLMResponseParseError("Answer key response has no answers array")

    logger.debug("answer_key_chain_complete", model_used=model_used, items_returned=len(answers))
    return [item for item in answers if isinstance(item, dict)]
