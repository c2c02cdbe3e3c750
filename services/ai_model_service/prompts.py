CLOSING_LINE = "💡 Remember: This is a learning tool to help you understand trading better!"

class PromptRegistry:
    TEMPLATES = {
        "general_analysis": {
            "v1": """
            As Tradeable's primary AI analyst, provide comprehensive analysis for: "{query}"

            Market Context: {context}

            Focus on:
            - Market trends and patterns
            - Risk assessment
            - Educational insights
            - Actionable recommendations

            Provide structured, analytical response.
            """,
        },
        "technical_summary": {
            "v1": """Analyze this cryptocurrency technical data:
            Price: ${price}
            24h Change: {change}%
            Volume: ${volume}
            Market Cap: ${market_cap}

            Query: {query}
            """,
        },
        "model_analysis": {
            "v1": """
            {index}. {source} (Confidence: {confidence:.1f}%, Weight: {weight:.1f}%):
            {data}
            """,
        },
        "synthesis": {
            "v1": """
            As Tradeable's AI coordinator, synthesize these AI model analyses into one comprehensive response:

            Original Query: "{query}"

            Model Analyses:
            {analyses}

            Requirements:
            - Synthesize insights from all models
            - Highlight areas of consensus
            - Note conflicting viewpoints and explain why
            - Provide balanced, actionable advice
            - Maintain educational tone
            - Include confidence indicators
            - End with: "{closing}"

            Create a unified response that leverages the strengths of each model.
            """,
        },
    }

    @staticmethod
    def get_prompt(task: str, version: str = "v1", **kwargs) -> str:
        template = PromptRegistry.TEMPLATES.get(task, {}).get(version)
        if not template:
            raise ValueError(f"Prompt template for {task} version {version} not found.")
        return template.format(**kwargs)

# Singleton
prompt_registry = PromptRegistry()
