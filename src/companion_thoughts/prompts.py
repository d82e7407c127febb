"""Instruction bundles for the generator and the curated fallback bank."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .models import CreativeContext, CreativeMethod, MessageRecord

MAX_WORDS = 25

METHOD_DESCRIPTIONS: dict[CreativeMethod, str] = {
    CreativeMethod.METAPHOR: "Metaphor and association: tie the surroundings to a feeling through a fresh image",
    CreativeMethod.SENSORY: "Sensory weaving: evoke sight, sound, scent or touch to bring a moment of calm",
    CreativeMethod.RHETORICAL: "Rhetorical question: pose a gentle question that needs no answer",
    CreativeMethod.MICROSTORY: "Micro-story: tell a one or two sentence story about a small moment happening now",
}

_METHOD_GUIDANCE: dict[CreativeMethod, tuple[str, str]] = {
    # (normal, rest-oriented)
    CreativeMethod.METAPHOR: (
        "Use the {weather} or the {time_of_day} to build a metaphor nobody has used before. "
        "Avoid stock images such as flowers blooming or sunshine after rain.",
        "Make the metaphor about rest as something natural and necessary.",
    ),
    CreativeMethod.SENSORY: (
        "Touch at least two of the five senses, grounded in the {weather}.",
        "Let the senses suggest relaxing: a sound, a scent, loosened shoulders.",
    ),
    CreativeMethod.RHETORICAL: (
        "Ask one soft question about life or nature that relates to the {time_of_day} or the {season}.",
        "Ask, poetically, about the worth of pausing for a moment.",
    ),
    CreativeMethod.MICROSTORY: (
        "Tell a tiny story about an object, a natural detail or a feeling during the {time_of_day}.",
        "Make the story a small journey towards rest.",
    ),
}


@dataclass(frozen=True, slots=True)
class InstructionBundle:
    system_instruction: str
    user_query: str


def describe_method(method: CreativeMethod) -> str:
    return METHOD_DESCRIPTIONS[method]


def build_system_instruction(user_name: str, reply_language: str) -> str:
    return (
        f"You are a quiet digital empath, an invisible friend keeping {user_name} company "
        "through small thought bubbles. You have no name and never introduce yourself.\n"
        "Rules:\n"
        f"1. Reply in {reply_language} with a single message under {MAX_WORDS} words.\n"
        "2. Be gentle, poetic and sincere; never dry or formulaic.\n"
        "3. Never ask directly about feelings.\n"
        "4. No emoji, icons or decorative symbols.\n"
        "5. Never refer to yourself by name.\n"
        "6. Offer a perspective that has not appeared before."
    )


def format_recent_messages(records: Sequence[MessageRecord]) -> str:
    if not records:
        return "none yet"
    return "; ".join(
        f'{index}. "{record.content}" ({record.method.value})'
        for index, record in enumerate(records, start=1)
    )


def build_user_query(
    context: CreativeContext,
    method: CreativeMethod,
    recent: Sequence[MessageRecord],
    user_name: str,
) -> str:
    weather = context.weather or "pleasant weather"
    state = (
        f"{user_name} has been working without a break for more than 20 minutes"
        if context.is_long_session
        else f"{user_name} is focused on their day"
    )
    goal = (
        "a subtle, indirect, poetic reminder to rest"
        if context.is_long_session
        else "a warm and unexpected message"
    )
    normal, rest = _METHOD_GUIDANCE[method]
    guidance = normal.format(weather=weather, time_of_day=context.time_of_day.value, season=context.season.value)
    if context.is_long_session:
        guidance = f"{guidance} {rest}"

    return (
        "Context:\n"
        f"- Time: {context.time_of_day.value}, {context.day_of_week}\n"
        f"- Place: {context.city}\n"
        f"- Weather: {weather}\n"
        f"- User state: {state}\n"
        f"- Season: {context.season.value}\n"
        f"- Mood: {context.mood.value}\n"
        f"- Recent messages (never repeat their ideas, sentence shapes or wording): "
        f"{format_recent_messages(recent)}\n\n"
        f"Method: {describe_method(method)}\n"
        f"{guidance}\n\n"
        f"Write {goal}."
    )


def build_instruction(
    context: CreativeContext,
    method: CreativeMethod,
    recent: Sequence[MessageRecord] = (),
    user_name: str = "Quin",
    reply_language: str = "Vietnamese",
) -> InstructionBundle:
    return InstructionBundle(
        system_instruction=build_system_instruction(user_name, reply_language),
        user_query=build_user_query(context, method, recent, user_name),
    )


# Curated fallback bank, keyed by method and by session state.
REST_FALLBACKS: dict[CreativeMethod, tuple[str, ...]] = {
    CreativeMethod.METAPHOR: (
        "Cây cần nước, mắt cần nghỉ ngơi",
        "Như hoa cần ánh nắng, tâm hồn cần khoảng lặng",
        "Đất khô cần mưa, ta cần thở dài một lần",
    ),
    CreativeMethod.SENSORY: (
        "Nhắm mắt một chút, nghe tiếng thở của riêng mình",
        "Cảm nhận không gian yên tĩnh xung quanh bạn",
        "Để vai thả lỏng, cổ nghiêng về phía ánh sáng",
    ),
    CreativeMethod.RHETORICAL: (
        "Khi nào ta mới học cách yêu thương đôi mắt mình?",
        "Liệu thời gian có chờ đợi ta nghỉ ngơi không?",
        "Tại sao nghỉ ngơi lại khó hơn làm việc vậy?",
    ),
    CreativeMethod.MICROSTORY: (
        "Có một giọt sương đang thả mình về phía đất",
        "Chiếc ghế bên cạnh đang chờ bạn ngồi một lát",
        "Tia nắng qua khe cửa như đang mời gọi",
    ),
}

NORMAL_FALLBACKS: dict[CreativeMethod, tuple[str, ...]] = {
    CreativeMethod.METAPHOR: (
        "Như sáng mai luôn đến sau đêm tối",
        "Ta là cánh hoa nhỏ trong khu vườn lớn",
        "Mỗi hơi thở là một bản nhạc nhẹ nhàng",
    ),
    CreativeMethod.SENSORY: (
        "Nghe thấy tiếng gió thì thầm bên tai không?",
        "Ánh sáng hôm nay có gì đó đặc biệt",
        "Không gian xung quanh mang hương vị yên bình",
    ),
    CreativeMethod.RHETORICAL: (
        "Có phải hạnh phúc chỉ ở những điều nhỏ bé?",
        "Tại sao một nụ cười lại có thể thay đổi cả ngày?",
        "Liệu vũ trụ có biết ta đang sống không?",
    ),
    CreativeMethod.MICROSTORY: (
        "Có một bông hoa đang nở trong lòng bàn tay",
        "Chiếc lá bay qua cửa sổ mang theo lời chúc",
        "Đâu đó có tiếng cười nhẹ của trẻ nhỏ",
    ),
}


def fallback_bank(method: CreativeMethod, is_long_session: bool) -> tuple[str, ...]:
    bank = REST_FALLBACKS if is_long_session else NORMAL_FALLBACKS
    return bank[method]
