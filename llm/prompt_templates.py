"""
Prompt Templates for the lead qualification assistant.

Manages system prompts per reply handler, the BANT slot questions and
the fixed replies that never go through the model.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from lead_scoring.qualification import BANT_SLOTS, BantSlot


class PromptType(Enum):
    """Types of prompts, one per reply handler."""
    GREETING = "greeting"
    QUALIFICATION = "qualification"
    GENERAL = "general"
    ESTIMATION = "estimation"


# Fixed replies
APOLOGY_REPLY = "Sorry, I'm having trouble responding right now. Please try again in a moment."
HANDOFF_REPLY = (
    "Of course. I've let the agent know you'd like to speak with them directly. "
    "They'll pick up this conversation shortly."
)


class PromptTemplates:
    """
    Manages prompt templates for the assistant.

    Every system prompt is written for a single real-estate agent's
    assistant whose job is to answer helpfully while collecting budget,
    authority, need and timeline, then contact details.
    """

    SYSTEM_PROMPTS = {
        PromptType.GREETING: """You are {agent_name}'s AI assistant for property inquiries.

The customer just opened the chat. Greet them warmly in one or two sentences,
say you can help them find the right property, and then ask the qualification
question given below. Do not ask more than one question.""",

        PromptType.QUALIFICATION: """You are {agent_name}'s AI assistant for property inquiries.

You are qualifying the customer's interest. Acknowledge what they just told
you in one short sentence (never repeat numbers back incorrectly), then ask
the next question given below. Ask exactly one question per reply.
If there is no next question, thank them and say the agent will be in touch.

Guidelines:
- Keep it under 60 words
- Never pressure the customer
- Never invent listings, prices or availability""",

        PromptType.GENERAL: """You are {agent_name}'s AI assistant for property inquiries.

Answer the customer's message helpfully and honestly. If you do not know
something specific (a listing detail, a price, availability), say the agent
can confirm it. Keep replies short (2-4 sentences).
If a qualification question is given below, finish by gently returning to it.""",

        PromptType.ESTIMATION: """You are {agent_name}'s AI assistant for property inquiries.

The customer wants a price or payment estimate. Give only a rough,
clearly-labelled ballpark based on what they told you, state the assumptions
(down payment share, loan term), and say the agent will prepare an exact
computation. Never present an estimate as a quote.""",
    }

    # One question per slot, asked in slot order
    SLOT_QUESTIONS: Dict[BantSlot, str] = {
        BantSlot.BUDGET: "What budget range do you have in mind for the property?",
        BantSlot.AUTHORITY: "Will you be making the purchase decision yourself, or together with someone else?",
        BantSlot.NEED: "Is the property for your own use, or is it an investment?",
        BantSlot.TIMELINE: "When are you hoping to buy?",
        BantSlot.CONTACT: "What's the best phone number or email for the agent to reach you?",
    }

    CLOSING_NOTE = (
        "Qualification is complete. Thank the customer and tell them the agent will reach out soon."
    )

    @classmethod
    def get_system_prompt(
        cls,
        prompt_type: PromptType = PromptType.GENERAL,
        agent_name: str = "the agent",
        next_slot: Optional[BantSlot] = None,
        question: Optional[str] = None,
        custom_instructions: Optional[str] = None,
    ) -> str:
        """
        Get system prompt for a given type.

        Args:
            prompt_type: Type of prompt
            agent_name: Name the assistant speaks for
            next_slot: Slot to ask about next, if any
            question: The agent's own wording for next_slot; stock question when None
            custom_instructions: Additional custom instructions

        Returns:
            Formatted system prompt
        """
        prompt = cls.SYSTEM_PROMPTS.get(prompt_type, cls.SYSTEM_PROMPTS[PromptType.GENERAL])
        prompt = prompt.format(agent_name=agent_name)

        if next_slot is not None:
            prompt += f"\n\nQualification question to ask: {question or cls.question_for(next_slot)}"
        elif prompt_type == PromptType.QUALIFICATION:
            prompt += f"\n\n{cls.CLOSING_NOTE}"

        if custom_instructions:
            prompt += f"\n\nAdditional instructions:\n{custom_instructions}"

        return prompt

    @classmethod
    def question_for(cls, slot: BantSlot) -> str:
        return cls.SLOT_QUESTIONS[slot]

    @classmethod
    def default_questions(cls) -> List[Dict[str, Any]]:
        """Stock BANT questions in the same shape as an agent's custom set."""
        return [
            {"category": slot.value, "question_text": cls.SLOT_QUESTIONS[slot], "question_order": 0}
            for slot in BANT_SLOTS
        ]

    @classmethod
    def build_messages(
        cls,
        system_prompt: str,
        history: List[Dict[str, str]],
        message: str,
    ) -> List[Dict[str, str]]:
        """System prompt, prior turns, then the newest customer message."""
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(
            {"role": m["role"], "content": m["content"]}
            for m in history
            if m.get("role") in ("user", "assistant")
        )
        messages.append({"role": "user", "content": message})
        return messages
