import json
import logging
from typing import Any, List, Optional

from .base_worker import BaseWorker

logger = logging.getLogger(__name__)


def _findings(content: str) -> Optional[List[Any]]:
    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if isinstance(data, dict):
        data = data.get("results") or data.get("findings")
    return data if isinstance(data, list) else None


class ResearcherWorker(BaseWorker):
    def postprocess(self, content: str) -> str:
        """
        Research answers may come back as a JSON array of findings
        (title/content/source). Those are rendered as readable sections;
        anything else is kept as plain text.
        """
        findings = _findings(content)
        if not findings:
            return content.strip()

        sections = []
        for finding in findings:
            if not isinstance(finding, dict):
                sections.append(str(finding))
                continue
            title = finding.get("title", "Finding")
            body = finding.get("content", "")
            source = finding.get("source")
            section = f"### {title}\n{body}"
            if source:
                section += f"\nSource: {source}"
            sections.append(section)

        logger.info(f"[{self.agent_name}] Parsed {len(sections)} research findings")
        return "\n\n".join(sections)
