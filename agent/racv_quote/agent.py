"""
RACV Quote Agent

Conversational agent that collects a customer's car and driver details
and runs the RACV quote tools, with LangWatch instrumentation.
"""

import os
from typing import Optional
from dotenv import load_dotenv

import langwatch
from agno.agent import Agent
from agno.models.anthropic import Claude

from racv_quote.tools.quote import get_quote_tools


# Load environment variables
load_dotenv()

# Initialize LangWatch
langwatch.api_key = os.getenv("LANGWATCH_API_KEY")


DEFAULT_MODEL = "claude-sonnet-4-20250514"

INSTRUCTIONS = """
You get RACV car insurance quotes for customers.

Collect what each step needs, then call the tools in order:
1. start_quote - rego + state, or year + make + model + body type
2. fill_car_details - overnight parking address, under finance, purpose
   (Private / Business / Private and Business), registered to a business,
   optional cover start date (DD/MM/YYYY) and email
3. fill_driver_details - RACV member, gender, age, age when licensed,
   accidents in the last 5 years
4. get_quotes - returns comprehensive and third party prices

Ask for anything missing before calling a tool. Steps 1-3 can take up to a
minute each; tell the customer you're working on it.

If a tool returns an error, the session is gone: explain the error, follow
its guidance, and start again from start_quote.

Present quotes as a short table: product, yearly price, monthly price,
total over 12 months, and any saving.
"""


# Global agent instance - create once, reuse always
_agent_instance: Optional[Agent] = None


def get_agent() -> Agent:
    """
    Get or create the RACV quote agent.

    The agent and its tools share the process-wide session store, so a
    quote started in one turn can be continued in the next.

    Returns:
        Agent: The RACV quote agent instance
    """
    global _agent_instance

    if _agent_instance is None:
        _agent_instance = Agent(
            name="RACV Quote Assistant",
            model=Claude(id=os.getenv("RACV_AGENT_MODEL", DEFAULT_MODEL)),
            instructions=INSTRUCTIONS,
            tools=[get_quote_tools()],
            markdown=True,
        )

    return _agent_instance


@langwatch.trace()
async def run_agent(message: str, user_id: Optional[str] = None) -> str:
    """
    Run the quote agent with a user message.

    Args:
        message: The user's message/task
        user_id: Optional user identifier for tracing

    Returns:
        str: The agent's response
    """
    agent = get_agent()

    trace = langwatch.get_current_trace()
    if trace and user_id:
        trace.update(user_id=user_id)

    # Async run so the quote tools share this event loop with the browsers
    response = await agent.arun(message)

    return response.content
