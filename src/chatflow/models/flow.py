"""
Flow capability and static configuration models, read once per session open.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

START_NODE_NAME = "startAgentflow"
FORM_INPUT = "formInput"


class UploadRule(BaseModel):
    file_types: list[str] = Field(default_factory=list, alias="fileTypes")
    max_upload_size: float = Field(default=0, alias="maxUploadSize")  # MB

    model_config = {"populate_by_name": True}

    @property
    def is_wildcard(self) -> bool:
        return self.file_types == ["*"]


class UploadConstraints(BaseModel):
    """GET chatflows-uploads/{flow}"""
    is_image_upload_allowed: bool = Field(default=False, alias="isImageUploadAllowed")
    img_upload_size_and_types: list[UploadRule] = Field(default_factory=list, alias="imgUploadSizeAndTypes")
    is_rag_file_upload_allowed: bool = Field(default=False, alias="isRAGFileUploadAllowed")
    file_upload_size_and_types: list[UploadRule] = Field(default_factory=list, alias="fileUploadSizeAndTypes")
    is_speech_to_text_enabled: bool = Field(default=False, alias="isSpeechToTextEnabled")

    model_config = {"populate_by_name": True}

    @property
    def image_mime_types(self) -> set[str]:
        return {t for rule in self.img_upload_size_and_types for t in rule.file_types}


class LeadsConfig(BaseModel):
    status: bool = False
    title: Optional[str] = None
    name: bool = False
    email: bool = False
    phone: bool = False
    success_message: Optional[str] = Field(default=None, alias="successMessage")

    model_config = {"populate_by_name": True}


class FullFileUploadConfig(BaseModel):
    status: bool = False
    allowed_upload_file_types: str = Field(default="*", alias="allowedUploadFileTypes")

    model_config = {"populate_by_name": True}


class StartForm(BaseModel):
    """Form the flow's start node asks for instead of free text."""
    title: Optional[str] = None
    description: Optional[str] = None
    inputs: list[dict[str, Any]] = Field(default_factory=list)


class FlowConfig(BaseModel):
    starter_prompts: list[str] = Field(default_factory=list)
    chat_feedback_enabled: bool = False
    leads: Optional[LeadsConfig] = None
    follow_up_prompts_enabled: bool = False
    full_file_upload: FullFileUploadConfig = Field(default_factory=FullFileUploadConfig)
    start_input_type: Optional[str] = None
    start_form: Optional[StartForm] = None
    has_start_node: bool = False

    @property
    def leads_required(self) -> bool:
        return bool(self.leads and self.leads.status)

    @classmethod
    def from_chatflow(cls, chatflow: dict[str, Any]) -> "FlowConfig":
        """Build from GET chatflows/{flow}; `flowData` and `chatbotConfig` are JSON strings."""
        config = cls()
        flow_data = loads_json(chatflow.get("flowData"))
        if isinstance(flow_data, dict):
            config._apply_flow_data(flow_data)
        chatbot_config = loads_json(chatflow.get("chatbotConfig"))
        if isinstance(chatbot_config, dict):
            config._apply_chatbot_config(chatbot_config)
        return config

    def _apply_flow_data(self, flow_data: dict[str, Any]) -> None:
        nodes = flow_data.get("nodes") or []
        start = next((n for n in nodes if (n.get("data") or {}).get("name") == START_NODE_NAME), None)
        if start is None:
            return
        self.has_start_node = True
        inputs = start["data"].get("inputs") or {}
        self.start_input_type = inputs.get("startInputType")
        form_inputs = inputs.get("formInputTypes") or []
        if self.start_input_type == FORM_INPUT and form_inputs:
            for param in form_inputs:
                if param.get("type") == "options":
                    param["options"] = [
                        {"label": o.get("option"), "name": o.get("option")}
                        for o in param.get("addOptions") or []
                    ]
            self.start_form = StartForm(
                title=inputs.get("formTitle"),
                description=inputs.get("formDescription"),
                inputs=form_inputs,
            )

    def _apply_chatbot_config(self, cfg: dict[str, Any]) -> None:
        starters = cfg.get("starterPrompts") or {}
        values = starters.values() if isinstance(starters, dict) else starters
        self.starter_prompts = [s["prompt"] for s in values if isinstance(s, dict) and s.get("prompt")]
        if cfg.get("chatFeedback"):
            self.chat_feedback_enabled = bool(cfg["chatFeedback"].get("status"))
        if cfg.get("leads"):
            self.leads = LeadsConfig.model_validate(cfg["leads"])
        if cfg.get("followUpPrompts"):
            self.follow_up_prompts_enabled = bool(cfg["followUpPrompts"].get("status"))
        if cfg.get("fullFileUpload"):
            full = cfg["fullFileUpload"]
            self.full_file_upload = FullFileUploadConfig(
                status=bool(full.get("status")),
                allowed_upload_file_types=full.get("allowedUploadFileTypes") or "*",
            )


def loads_json(value: Any) -> Any:
    """Decode a field the backend sends as a JSON string. Other values pass through."""
    if not isinstance(value, str):
        return value
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Ignoring unparseable JSON field")
        return None
