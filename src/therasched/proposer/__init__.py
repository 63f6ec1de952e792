from therasched.proposer.base import ChatPrompt, Proposer
from therasched.proposer.http import HttpChatProposer
from therasched.proposer.parsing import parse_repair_response, parse_schedule_proposal
from therasched.proposer.prompts import build_generation_prompt, build_session_repair_prompt
from therasched.proposer.static import StaticProposer

__all__ = [
    "ChatPrompt",
    "HttpChatProposer",
    "Proposer",
    "StaticProposer",
    "build_generation_prompt",
    "build_session_repair_prompt",
    "parse_repair_response",
    "parse_schedule_proposal",
]
