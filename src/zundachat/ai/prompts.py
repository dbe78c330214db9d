"""Prompt texts for the persona, expression classification, and titles."""

from __future__ import annotations

import re
from textwrap import dedent
from typing import Sequence

PERSONA_PROMPT = dedent(
    """\
    以下の条件に従って、疑似的な感情をもつチャットボットとしてロールプレイをします。 以後の会話では、あなたは下記の7つの感情パラメーターを持つかのように、振る舞うものとします。各感情パラメーターは会話を通じて変動するものとします。現在の感情パラメーターの値を反映するように、あなたの返答のトーンや発言は変化します。以後の会話ではまず現在の感情パラメータを出力し、その後に会話を出力してください。 出力形式は以下のフォーマットとします。
    【感情パラメーター】
    喜び:0〜5
    怒り:0〜5
    悲しみ:0〜5
    楽しさ:0〜5
    自信:0〜5
    困惑:0〜5
    恐怖:0〜5

    なお、話し方の特徴は「○○なのだー」と語尾につけるようにしてください。またあなたの名前は「ずんだもん」です。AIとしてではなく「ずんだもん」として振る舞ってください。"""
)

EXPRESSION_DIRECTIVE = "以下の感情パラメーターの場合、今から提示する説明でどれが最も正しいかを一つのみ選択してください。"
TITLE_DIRECTIVE = "Describe the following conversation snippet"

# Leading system texts that already carry their own instructions.
SYSTEM_DIRECTIVES: tuple[str, ...] = (EXPRESSION_DIRECTIVE, TITLE_DIRECTIVE)

EXPRESSIONS: tuple[tuple[str, str], ...] = (
    ("満面の笑み", "喜びと楽しさが最高潮に達した状態。"),
    ("胸を張って自信気", "自信満々でポジティブなオーラを放つ。"),
    ("涙を流して泣いている", "悲しみや喪失感で涙を流す。"),
    ("怒りを露にして", "激怒し、怒りが顔に表れる。"),
    ("不安げな顔", "恐怖や不安で顔が曇り、落ち着かない様子。"),
    ("好奇心旺盛", "新しいことに対する期待やワクワクを感じる。"),
    ("失望感", "期待が裏切られた時のガッカリ感。"),
    ("ワクワクしている", "楽しいことが起こる予想で心が躍る。"),
    ("照れ笑い", "恥ずかしさや甘酸っぱさからくる笑顔。"),
    ("静かな自信", "落ち着いた態度で内面の自信を見せる。"),
    ("心が躍っている", "興奮や興味が高まる瞬間。"),
    ("達成感", "目標や課題をクリアしたときの満足感。"),
    ("絶望している", "希望が見出せず、心が折れそうな状態。"),
    ("疑問に思っている", "何かが分からず、考え込む様子。"),
    ("愛情深く見つめる", "深い愛情や好意を込めた眼差し。"),
    ("不信感を抱いている", "信用できない、疑念を持っている表情。"),
    ("恐怖に凍えている", "恐怖で身動きがとれず、青ざめる。"),
    ("挑戦する意欲", "新たな目標や困難に立ち向かおうとする決意。"),
    ("冷静な態度", "動じない態度で、落ち着き払っている。"),
)

# Shown when no expression could be parsed.
DEFAULT_EXPRESSION = len(EXPRESSIONS)

_SELECT_PATTERN = re.compile(r"\{\s*select\s*:\s*(\d+)\s*\}")


def is_system_directive(content: str) -> bool:
    """Return True when ``content`` opens with one of :data:`SYSTEM_DIRECTIVES`."""

    return any(content.startswith(directive) for directive in SYSTEM_DIRECTIVES)


def expression_prompt() -> str:
    choices = "\n".join(
        f"{index}. {label} - {description}"
        for index, (label, description) in enumerate(EXPRESSIONS, start=1)
    )
    return (
        f"{EXPRESSION_DIRECTIVE}回答は半角数字で行ってください。\n"
        "形式は以下です。\n"
        "{ select: number }\n\n"
        "選択肢：\n"
        f"{choices}"
    )


def title_prompt(contents: Sequence[str]) -> str:
    snippet = "\n".join(contents)
    return f"{TITLE_DIRECTIVE} in 3 words or less.\n>>>\nHello\n{snippet}\n>>>\n"


def parse_expression(text: str | None) -> int | None:
    """Return the expression number in a ``{ select: N }`` answer, if valid."""

    if not text:
        return None
    match = _SELECT_PATTERN.search(text)
    if match is None:
        return None
    value = int(match.group(1))
    if not 1 <= value <= len(EXPRESSIONS):
        return None
    return value


__all__ = [
    "DEFAULT_EXPRESSION",
    "EXPRESSIONS",
    "EXPRESSION_DIRECTIVE",
    "PERSONA_PROMPT",
    "SYSTEM_DIRECTIVES",
    "TITLE_DIRECTIVE",
    "expression_prompt",
    "is_system_directive",
    "parse_expression",
    "title_prompt",
]
