from .base_worker import BaseWorker


class AnalystWorker(BaseWorker):
    def postprocess(self, content: str) -> str:
        content = content.strip()
        if content.lower().startswith("key insights"):
            return content
        return f"Key Insights:\n{content}"
