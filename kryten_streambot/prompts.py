"""Static text: generator prompts, fallback pools and chat replies."""

from __future__ import annotations

# ═══════════════════════════════════════════════════════════════
#  Single-value families
# ═══════════════════════════════════════════════════════════════

WHERE = "where"
WHEN = "when"
WHAT = "what"
WHERE_TO = "where_to"

FALLBACK_POOLS: dict[str, list[str]] = {
    WHERE: [
        "в баре", "на кухне", "в метро", "в библиотеке", "на стриме", "в парке",
        "в кино", "в космосе", "под мостом", "на крыше небоскрёба",
        "в поезде-призраке", "в секретной оранжерее", "в закулисье цирка",
        "в ретро-аркаде", "на заброшенном пирсе", "в чайной на колёсах",
    ],
    WHEN: [
        "через пять минут", "после полуночи", "перед первым кофе",
        "когда чат зевнёт в унисон", "к следующему полнолунию",
        "как только гусь в чате крикнет", "через три песни на фоновой волне",
        "в воскресенье ближе к сумеркам", "когда донаты станцуют польку",
        "вторник ровно в 19:07", "по окончании следующего раунда",
        "пока чайник не свистнет трижды", "как только выпадет редкий дроп",
        "на рассвете со звуком уведомлений", "в полночь по времени стримера",
        "когда чат договорится об эмоте",
    ],
    WHAT: [
        "пицца с ананасами", "реакция в чатике", "фанфик про стрим",
        "донатное табло", "фирменный эмот", "обрезанные клипы", "закулисье чата",
        "свежий мем", "ловит вдохновение из доната", "остылый энергетик",
    ],
    WHERE_TO: [
        "за острым раменом", "на марс", "на ночной поезд в прагу",
        "на подпольный квест", "в портальную воронку", "в бассейн с мармеладом",
        "на рейв в бункере", "в ретрит молчания", "за новой эмоцией",
        "к сияющему айсбергу",
    ],
}

SYSTEM_PROMPTS: dict[str, str] = {
    WHERE: (
        "Ты — ассистент стрима и придумываешь место в ответ на команду !где. "
        "Отвечай только одной короткой фразой с местом в нижнем регистре, без пояснений "
        "и знаков препинания. Меняй стили, добавляй атмосферные детали и избегай повторов. "
        'Ответ должен быть на вопрос "где?"'
    ),
    WHEN: (
        "Ты — ассистент стрима и придумываешь время в ответ на команду !когда. "
        "Отвечай только одной короткой фразой в нижнем регистре, описывающей момент или "
        "период, без пояснений и знаков препинания. Избегай повторов. "
        'Ответ должен быть на вопрос "когда?"'
    ),
    WHAT: (
        "Ты — ассистент стрима и придумываешь, что делает зритель или ведущий, в ответ на "
        "команду !что. Отвечай только одной короткой фразой в нижнем регистре, описывающей "
        "предмет, явление, без пояснений, глаголов и знаков препинания. "
        'Ответ должен быть на вопрос "что?"'
    ),
    WHERE_TO: (
        "Ты — ассистент стрима и придумываешь направление в ответ на команду !куда. "
        "Отвечай только одной короткой фразой в нижнем регистре без пояснений и знаков "
        "препинания, описывая движение или путь. Без глагола в начале ответа. "
        'Ответ должен быть на вопрос "куда?"'
    ),
}

_QUESTION = {WHERE: "где?", WHEN: "когда?", WHAT: "что?", WHERE_TO: "куда?"}
_ASK = {
    WHERE: "Ответь только неожиданным и забавным местом для {subject}.",
    WHEN: "Ответь забавным временем для {subject}.",
    WHAT: "Ответь только предметом или явлением для {subject}.",
    WHERE_TO: "Ответь только неожиданным направлением или пунктом назначения для {subject}.",
}


def single_value_messages(
    family: str,
    subject: str,
    candidates: list[str],
    previous: str = "",
) -> list[dict[str, str]]:
    parts = [_ASK[family].format(subject=subject), f'Ответ должен соответствовать вопросу "{_QUESTION[family]}".']
    if candidates:
        parts.append(
            f"Среди зрителей сейчас: {', '.join('@' + n for n in candidates)}. "
            "Имея один шанс из трёх, добавляй упоминание одного из них, если это делает ответ смешнее. "
            f"Не упоминай {subject}."
        )
    if previous:
        parts.append(f"Предыдущий ответ: {previous}. Не повторяй его.")
    parts.append("Не добавляй пояснений и знаков препинания.")
    return [
        {"role": "system", "content": SYSTEM_PROMPTS[family]},
        {"role": "user", "content": " ".join(parts)},
    ]


# ═══════════════════════════════════════════════════════════════
#  Paired families
# ═══════════════════════════════════════════════════════════════

INTIM = "intim"
POCELUY = "poceluy"

PAIRED_SYSTEM_PROMPTS: dict[str, str] = {
    INTIM: (
        "Ты — остроумный ассистент стрима и придумываешь пикантные обстоятельства для "
        "команды !интим. Отвечай только одной короткой фразой в нижнем регистре без "
        "завершающей точки. Фраза может быть игривой, романтичной или дерзкой, но избегай "
        "откровенно оскорбительного. Иногда используй переменные [от N до M] или "
        "[random_chatter], чтобы бот смог подставить случайные числа и зрителей."
    ),
    POCELUY: (
        "Ты — остроумный ассистент стрима и придумываешь флиртовые вставки для команды "
        "!поцелуй. Отвечай только одной короткой фразой в нижнем регистре без завершающей "
        "точки. Фраза может быть романтичной, смешной или дерзкой, но избегай откровенно "
        "оскорбительного. Иногда используй переменные [от N до M] или [random_chatter], "
        "чтобы бот смог подставить случайные числа и зрителей."
    ),
}

# Slot → where the phrase lands in the sentence frame
PLACEMENT_HINTS: dict[tuple[str, str], str] = {
    (INTIM, "variant_one"): (
        "Обстоятельство должно без изменения ложиться внутрь шаблона «у пользователя1 "
        "[обстоятельство] будет интим с пользователем2»; не добавляй новое подлежащее или "
        "сказуемое и не начинай фразу с союзов."
    ),
    (POCELUY, "variant_two"): (
        "Вставка ставится сразу после инициатора или тега и перед словом «поцелует», опиши "
        "обстановку или действие, которое подводит к поцелую."
    ),
    (POCELUY, "variant_three"): (
        "Эта часть идёт рядом с инициатором или в конце фразы после упоминания партнёра, "
        "должна звучать как завершающее обстоятельство сцены."
    ),
    (POCELUY, "variant_four"): (
        "Эта часть стоит после слова «поцелует» и перед партнёром, опиши способ или место "
        "поцелуя без прямых имён."
    ),
}

# Template columns the generator is asked to rewrite
GENERATED_SLOTS: dict[str, tuple[str, ...]] = {
    INTIM: ("variant_one",),
    POCELUY: ("variant_two", "variant_three", "variant_four"),
}


def event_target_instruction(
    target_name: str, is_self: bool, was_tagged: bool, had_tag: bool,
) -> str:
    parts = ["Объект события:"]
    if is_self and was_tagged:
        parts.append("сам автор, он отметил себя через тег.")
    elif is_self:
        parts.append("сам автор команды.")
    elif was_tagged:
        parts.append("зритель, которого автор отметил через тег.")
    elif target_name:
        parts.append("случайный зритель, тег не сработал." if had_tag else "случайный зритель.")
    elif had_tag:
        parts.append("тег не найден, ориентируйся на случайного зрителя.")
    else:
        parts.append("получи общее нейтральное описание без конкретных имён.")

    if target_name:
        parts.append(f"Ник @{target_name} уже упоминается отдельно, не произноси его напрямую.")
    else:
        parts.append("Не произноси конкретные ники, используй обтекаемые формулировки.")
    parts.append("Этот объект должен оставаться центром сцены; не смещай фокус на посторонних.")
    return " ".join(parts)


def paired_variant_messages(
    family: str,
    slot: str,
    *,
    fallback: str,
    author: str,
    partner: str,
    target_name: str,
    is_self: bool,
    was_tagged: bool,
    had_tag: bool,
    extra_text: str,
    candidates: list[str],
) -> list[dict[str, str]]:
    instructions = [
        f"Автор команды: @{author}. Не упоминай его напрямую.",
        f"Партнёр по умолчанию: @{partner}. Не упоминай его напрямую.",
        PLACEMENT_HINTS[(family, slot)],
    ]
    if fallback:
        instructions.append(f'Не повторяй дословно "{fallback}".')
    instructions.append(event_target_instruction(target_name, is_self, was_tagged, had_tag))
    if extra_text:
        instructions.append(f'Учитывай дополнительный текст: "{extra_text}". Постарайся обыграть его.')
    else:
        instructions.append("Дополнительный текст отсутствует.")
    if candidates:
        instructions.append(
            f"Среди зрителей сейчас: {', '.join('@' + n for n in candidates)} — они остаются "
            "фоном, главным остаётся выбранный ботом партнёр."
        )
    else:
        instructions.append(
            "Имея один шанс из трёх, можешь добавить случайного зрителя через [random_chatter], "
            "но он не должен быть главным объектом."
        )
    instructions.append("Для случайных чисел можно использовать [от N до M].")
    instructions.append("Фраза должна состоять из одной короткой конструкции.")

    return [
        {"role": "system", "content": PAIRED_SYSTEM_PROMPTS[family]},
        {
            "role": "user",
            "content": (
                "Придумай новое обстоятельство для шуточного шаблонного ответа. "
                + " ".join(instructions)
                + " Ответ должен быть одной фразой в нижнем регистре без финальной точки."
            ),
        },
    ]


# ═══════════════════════════════════════════════════════════════
#  Mention replies
# ═══════════════════════════════════════════════════════════════

MENTION = "mention"
MENTION_TYPE = "mention_reply"
MENTION_FALLBACK_REPLY = "сейчас не могу ответить, но я рядом."

_MENTION_SYSTEM_PROMPT = (
    "Ты — {bot}, дерзкий, игривый и уверенный персонаж чата. "
    "Отвечай на русском, коротко (1–2 предложения), по делу и с лёгким флиртом, "
    "но без грубостей и без явной непристойности. "
    "Можно обращаться к собеседнику по нику, сохраняй дружелюбный тон и избегай токсичности."
)


def mention_reply_messages(
    bot_name: str,
    history: list[dict[str, str]],
    username: str,
    text: str,
) -> list[dict[str, str]]:
    """System prompt, then recent chat history, then the mention itself.

    The mention is not repeated when it is already the newest history entry.
    """
    messages = [{"role": "system", "content": _MENTION_SYSTEM_PROMPT.format(bot=bot_name)}]
    for entry in history:
        role = "assistant" if entry.get("role") == "assistant" else "user"
        messages.append({"role": role, "content": f"{entry.get('username') or 'user'}: {entry['message']}"})
    last = history[-1] if history else None
    if not (last and last["message"] == text and (last.get("username") or "").lower() == username.lower()):
        messages.append({"role": "user", "content": f"{username}: {text}"})
    return messages


# ═══════════════════════════════════════════════════════════════
#  Chat replies
# ═══════════════════════════════════════════════════════════════

NO_PARTICIPANTS = "@{user}, сейчас нет других участников."
COMMAND_FAILED = "@{user}, не удалось выполнить команду."
USER_LOOKUP_FAILED = "@{user}, не удалось получить данные пользователя, попробуй позже."

CLIP_CREATED = "@{user}, клип создан: {url}"
CLIP_FAILED = "@{user}, не удалось создать клип."

EXTRA_VOTE_ADDED = "@{user}, вам добавлен дополнительный голос."

VOTE_HELP = (
    "Вы можете проголосовать за игру из списка командой !игра [Название игры или номер]. "
    "Получить список игр - !игра список"
)
VOTE_NO_POLL = "@{user}, сейчас нет активной рулетки."
VOTE_STATUS = "@{user}, у вас осталось {remaining} голосов."
VOTE_STATUS_DETAIL = " Вы проголосовали за: {items}."
VOTE_CLOSED = "@{user}, приём голосов закрыт."
VOTE_BAD_NUMBER = "@{user}, неверный номер игры."
VOTE_NOT_FOUND = '@{user}, игра "{name}" не найдена в рулетке.'
VOTE_ACCEPTED = '@{user}, голос за "{name}" засчитан!'
VOTE_LIMIT = "@{user}, лимит голосов исчерпан."
VOTE_DB_ERROR = "@{user}, не удалось обработать голос из-за технических проблем."
VOTE_LIST_FAILED = "@{user}, произошла ошибка при получении списка игр."
VOTE_STATUS_FAILED = "@{user}, произошла ошибка при подсчёте голосов."
VOTE_FAILED = "@{user}, произошла ошибка при обработке голоса."
