"""
Sentence embeddings with a Hugging Face transformer.

The default model is a multilingual sentence-transformers checkpoint, so
French questions and French knowledge entries land in the same space.
Vectors are mean-pooled over the attention mask and L2-normalized.
"""

import threading
import time
from typing import List, Optional

import torch
from transformers import AutoModel, AutoTokenizer

from issa.core.exceptions import ConfigurationError, ExternalServiceError, IssaError
from issa.core.logging import logger
from issa.core.secure_config import Settings
from issa.core.tracing import metrics
from issa.embeddings.types import l2_normalize


class TransformerEmbedder:
    """Embedder backed by transformers' AutoModel.

    The model is loaded lazily on the first embed() (or explicit load())
    call; the load is guarded by a lock so concurrent first calls load it
    only once.
    """

    def __init__(
        self,
        model_name: Optional[str] = None,
        device: Optional[str] = None,
        max_length: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        """Reads defaults from the embeddings section of the configuration.

        Args:
            model_name: Hub model id ("owner/name")
            device: "auto", "cpu" or "cuda"
            max_length: Token limit per text
            settings: Configuration source (a fresh Settings() when omitted)
        """
        if model_name is None or device is None or max_length is None:
            settings = settings or Settings()
            model_name = model_name or settings.get("embeddings.model")
            device = device or settings.get("embeddings.device", "auto")
            max_length = max_length or settings.get("embeddings.max_length", 256)

        if device not in ("auto", "cpu", "cuda"):
            logger.error("Invalid embeddings device", device=device)
            raise ConfigurationError(
                f"Invalid embeddings.device: {device}. Must be one of: auto, cuda, cpu"
            )

        self._model_name: str = str(model_name)
        self._device_config: str = str(device)
        self.max_length = int(max_length)  # type: ignore[arg-type]

        self._model = None
        self._tokenizer = None
        self._device: Optional[torch.device] = None
        self._load_lock = threading.Lock()

        logger.info(
            "TransformerEmbedder initialized (lazy loading enabled)",
            model=self._model_name,
            device=self._device_config,
        )

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def device(self) -> torch.device:
        """Device used for inference. "auto" picks CUDA when available."""
        if self._device is None:
            if self._device_config == "auto":
                self._device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
            elif self._device_config == "cuda" and not torch.cuda.is_available():
                logger.warning("CUDA requested but not available, changing to CPU")
                self._device = torch.device("cpu")
            else:
                self._device = torch.device(self._device_config)
            logger.info("Using device", device=str(self._device))
        return self._device

    def is_ready(self) -> bool:
        return self._model is not None and self._tokenizer is not None

    def load(self) -> None:
        """Loads tokenizer and model when needed.

        Raises:
            ExternalServiceError: download, load or device placement failed
        """
        if self.is_ready():
            return

        with self._load_lock:
            if self.is_ready():
                return

            logger.info("Loading model", model_name=self._model_name)
            start_time = time.perf_counter()

            try:
                tokenizer = AutoTokenizer.from_pretrained(self._model_name)
            except Exception as e:
                error = ExternalServiceError(
                    f"Could not download tokenizer {self._model_name}",
                    context={
                        "model": self._model_name,
                        "error_type": type(e).__name__,
                        "error_details": str(e),
                    },
                    cause=e,
                )
                error.add_suggestion("Check internet connection")
                error.add_suggestion("Check that the model name is correct")
                logger.error("Error downloading tokenizer", error=error.to_dict())
                raise error

            try:
                model = AutoModel.from_pretrained(self._model_name)
            except Exception as e:
                error = ExternalServiceError(
                    f"Could not load model {self._model_name}",
                    context={
                        "model": self._model_name,
                        "error_type": type(e).__name__,
                        "error_details": str(e),
                    },
                    cause=e,
                )
                error.add_suggestion("Check available disk space")
                error.add_suggestion("Clean transformers cache: ~/.cache/huggingface/")
                logger.error("Error loading model", error=error.to_dict())
                raise error

            try:
                model.to(self.device)
            except RuntimeError as e:
                if self.device.type != "cuda":
                    raise ExternalServiceError(
                        f"Error moving model to {self.device}",
                        context={"device": str(self.device), "error": str(e)},
                        cause=e,
                    )
                logger.warning("Error moving model to CUDA, trying CPU", error=str(e))
                self._device = torch.device("cpu")
                model.to(self._device)

            model.eval()
            self._tokenizer = tokenizer
            self._model = model

            load_time = (time.perf_counter() - start_time) * 1000
            metrics.increment("embeddings.model_loads")
            logger.info(
                "Model loaded successfully", device=str(self.device), load_time_ms=load_time
            )

    def embed(self, text: str) -> List[float]:
        """Normalized embedding for one text.

        Raises:
            ExternalServiceError: model unavailable or inference failed
        """
        self.load()
        if self._tokenizer is None or self._model is None:
            raise ExternalServiceError("The model or the tokenizer are not initialized")

        start_time = time.perf_counter()
        try:
            inputs = self._tokenizer(
                text,
                padding=True,
                truncation=True,
                max_length=self.max_length,
                return_tensors="pt",
            ).to(self.device)

            with torch.no_grad():
                outputs = self._model(**inputs)
                # Mean pooling over real tokens
                mask = inputs["attention_mask"].unsqueeze(-1).type_as(outputs.last_hidden_state)
                summed = (outputs.last_hidden_state * mask).sum(dim=1)
                counts = mask.sum(dim=1).clamp(min=1e-9)
                embedding = (summed / counts).cpu().numpy()[0]
        except IssaError:
            raise
        except Exception as e:
            logger.error("Embedding inference failed", error=str(e), text_length=len(text))
            raise ExternalServiceError(
                "Embedding inference failed",
                context={"model": self._model_name, "error": str(e)},
                cause=e,
            )

        metrics.increment("embeddings.encodes")
        logger.debug(
            "Text embedded",
            text_length=len(text),
            latency_ms=(time.perf_counter() - start_time) * 1000,
        )
        return l2_normalize(embedding).tolist()
