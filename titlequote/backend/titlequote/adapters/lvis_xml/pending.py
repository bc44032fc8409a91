# titlequote/adapters/lvis_xml/pending.py
"""
The pending structure is an opaque blob to us: parse it, patch the answer
leaves of prompt entries (located by ParamCode), serialize it back. Nothing
else in the tree is touched, so the rate service sees its own context again.
"""
from __future__ import annotations

from typing import Mapping

from lxml import etree

from .tree import child, iter_named, parse_xml, text_of, to_xml


def _ns_tag(like: etree._Element, name: str) -> str:
    ns = etree.QName(like).namespace
    return f"{{{ns}}}{name}" if ns else name


def is_prompt(qa: etree._Element) -> bool:
    return text_of(qa, "IsPrompt").lower() == "true"


def param_code(qa: etree._Element) -> str:
    return text_of(child(qa, "Param"), "ParamCode")


def _set_answer(qa: etree._Element, value: str) -> None:
    answers = child(qa, "Answers")
    if answers is None:
        answers = etree.SubElement(qa, _ns_tag(qa, "Answers"))

    existing = [c for c in answers if isinstance(c.tag, str)]
    if existing:
        slot = existing[0]
        for extra in existing[1:]:
            answers.remove(extra)
    else:
        slot = etree.SubElement(answers, _ns_tag(answers, "string"))
    slot.text = value


def merge_answers(level2_xml: str, answers_by_code: Mapping[str, str]) -> str:
    """
    Overwrite Answers/string of every IsPrompt=true entry whose ParamCode has
    an answer. Entries without an answer keep whatever they already carry.
    """
    root = parse_xml(level2_xml)
    for qa in iter_named(root, "RateCalcQandA"):
        if not is_prompt(qa):
            continue
        code = param_code(qa)
        if code and code in answers_by_code:
            _set_answer(qa, str(answers_by_code[code]))
    return to_xml(root)
