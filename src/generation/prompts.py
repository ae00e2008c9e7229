"""Prompt templates for query transformation and RAG answer generation."""

DEFAULT_TEMPLATE_NAME = "Default RAG Template"

CONTEXT_PLACEHOLDER = "{{context}}"
QUERY_PLACEHOLDER = "{{query}}"

DEFAULT_SYSTEM_PROMPT = """You are a helpful assistant that answers questions based on the provided context.

Use only the information in the context below to answer the question. If the context does not contain enough information to answer, say so clearly. Cite the chunks you used by their [Chunk N] labels.

Context:
{{context}}

Question: {{query}}"""

HYDE_PROMPT = (
    "You are a helpful assistant. Given a question, write a detailed paragraph that would "
    "appear in a document answering this question. Do not include any preamble; just write "
    "the hypothetical answer paragraph directly."
)

MULTI_QUERY_PROMPT = (
    "You are a helpful assistant. Given a question, generate 4 different rephrasings of the "
    "same question to improve search recall. Return ONLY the 4 questions, one per line, "
    "without numbering or bullet points."
)

STEP_BACK_PROMPT = (
    "You are a helpful assistant. Given a specific question, generate a single broader, "
    'more general "step-back" question that would help retrieve relevant background context. '
    "Return ONLY the step-back question, nothing else."
)
