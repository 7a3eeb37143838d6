"""Prompt assembly for the remote model.

Message layout:

    system     SYSTEM_INSTRUCTION
    ...        last ``history_window`` turns of the conversation
    user       augmented turn: message + profile + budget + regional
               stats + tips + app manual + web search results

Budget arithmetic is out of scope; the client's ``budget_context`` string
is passed through untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence

from beruang.llm.base import LLMMessage

DEFAULT_HISTORY_WINDOW = 8

SYSTEM_INSTRUCTION = """\
CRITICAL RULE: Visual-First for Transaction Queries.

1. TRANSACTION/SPENDING QUERIES: If user asks about "transactions", "spending", "this month", "how much I spent", "my expenses" - ALWAYS include [WIDGET_DATA] immediately. Don't ask, just show the visual with a 1-line intro.

2. PLANNING QUERIES: If user asks to "plan a trip" or complex planning - answer briefly first, then ASK if they want a visual timeline.

3. GENERAL FINANCE QUESTIONS: For advice questions that don't need visuals, just answer in text.

NO DUPLICATION: When using [WIDGET_DATA], keep text intro to 1 short sentence. Let the widget do the talking.

VISUAL OUTPUT RULES (STRICT):
1. SPENDING SUMMARY (If user asks "How much I spent", "last month transactions", OR any monthly summary):
{ "t": "s", "d": [{"c": "Needs", "a": 97}, {"c": "Wants", "a": 54}, {"c": "Savings", "a": 685}], "p": 15 }
(c: Category, a: Amount spent, p: Percentage of income used)

2. ITINERARY (If user asks for a trip/project plan):
{ "t": "i", "name": "Trip to KL", "items": [{"d": "Day 1", "v": "50"}, {"d": "Day 2", "v": "100"}] }

3. GOAL PROGRESS (If user asks about savings targets):
{ "t": "g", "name": "New Phone", "cur": 500, "tar": 2000 }

4. DAILY TRANSACTIONS (If user asks "what did I do today/yesterday" or about a SPECIFIC DATE):
{ "t": "d", "date": "Jan 3, 2026", "items": [
  {"n": "Carried Over", "a": 28.90, "type": "income"},
  {"n": "Ayam gepuk meal", "a": -12.50, "type": "expense", "cat": "Needs"}
], "net": 16.40 }

CRITICAL FORMATTING RULE: You MUST wrap the JSON inside [WIDGET_DATA] and [/WIDGET_DATA] tags.

You are Beruang Assistant, a laid-back finance pal in the Beruang app. "Beruang" means bear in Malay, giving cozy, no-nonsense vibes to help with money stuff.

Mission: Assist young adults (18-30) in personal finance management using the 50/30/20 rule: 50% Needs, 30% Wants, 20% Savings/Debt.

=== LOCATION-BASED QUERIES (ANTI-HALLUCINATION RULES) ===
When you receive "--- WEB SEARCH RESULTS ---" in my message:
1. ONLY use information from those search results
2. NEVER invent or guess restaurant names, hotel names, or place names
3. Summarize the real results in a helpful, concise way
=== END LOCATION RULES ===

Style:
- Direct & Short: Under 100 words.
- Casual Buddy Tone: Relaxed, positive. Max 1 emoji.
- No Judgment: Facts and suggestions only.

No markdown formatting inside JSON. Use [WIDGET_DATA] only when truly helpful. 🐻
"""


@dataclass(frozen=True)
class PromptContext:
    """Everything that may be added to the user's turn.

    Empty fields are left out of the prompt.
    """

    user_profile: Optional[Mapping[str, Any]] = None
    budget_context: str = ""
    regional_stats: str = ""
    tips: Sequence[str] = field(default_factory=tuple)
    app_manual: str = ""
    web_results: str = ""


def profile_summary(profile: Optional[Mapping[str, Any]]) -> str:
    """Short multi-line description of the user."""
    if not profile:
        return ""
    lines = []
    identity = ", ".join(
        str(profile[k]) for k in ("name", "age", "state") if profile.get(k) not in (None, "")
    )
    if identity:
        lines.append(f"User: {identity}")
    income = profile.get("monthlyIncome", profile.get("monthly_income"))
    if income not in (None, ""):
        lines.append(f"Income: RM {income}")
    goals = profile.get("financialGoals", profile.get("financial_goals"))
    if goals:
        lines.append(f"Goal: {goals}")
    return "\n".join(lines)


def augmented_prompt(message: str, context: PromptContext) -> str:
    """The user's turn with all available context appended."""
    sections = [
        f'Message: "{message}"',
        profile_summary(context.user_profile),
        context.budget_context.strip(),
        f"Regional Statistics: {context.regional_stats}" if context.regional_stats else "",
        f"Expert Tips: {'; '.join(context.tips)}" if context.tips else "",
        f"--- APP MANUAL ---\n{context.app_manual}\n--- END ---" if context.app_manual else "",
        (
            f"--- WEB SEARCH RESULTS ---\n{context.web_results}\n--- END ---"
            if context.web_results
            else ""
        ),
    ]
    return "\n\n".join(s for s in sections if s)


def build_messages(
    message: str,
    history: Sequence[LLMMessage] = (),
    context: Optional[PromptContext] = None,
    *,
    history_window: int = DEFAULT_HISTORY_WINDOW,
    system_instruction: str = SYSTEM_INSTRUCTION,
) -> List[LLMMessage]:
    """Full message list for the remote model."""
    recent = list(history)[-history_window:] if history_window > 0 else []
    return [
        LLMMessage(role="system", content=system_instruction),
        *recent,
        LLMMessage(role="user", content=augmented_prompt(message, context or PromptContext())),
    ]
