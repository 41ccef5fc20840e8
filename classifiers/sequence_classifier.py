"""序列模型分类模块，基于 GRU 等时序模型对特征窗口进行疲劳概率预测"""

import logging
import os
from typing import Callable, Optional, Sequence

import numpy as np

from classifiers.base import DROWSY_THRESHOLD, Classifier, label_for
from models.data_models import ClassificationResult, FeatureVector

logger = logging.getLogger(__name__)

NUM_FEATURES = 2
DEFAULT_SEQ_LEN = 24


def _load_tf():
    """延迟加载 TensorFlow，处理导入错误"""
    try:
        import tensorflow as tf
        return tf
    except ImportError as e:
        logger.warning("无法导入 TensorFlow，序列模型不可用")
        raise ImportError(
            "TensorFlow 未安装，请运行 pip install tensorflow 安装"
        ) from e


def _tflite_runner(tf, model_path: str) -> Callable[[np.ndarray], np.ndarray]:
    """构建基于 TFLite Interpreter 的推理函数"""
    interpreter = tf.lite.Interpreter(model_path=model_path)
    interpreter.allocate_tensors()
    input_index = interpreter.get_input_details()[0]["index"]
    output_index = interpreter.get_output_details()[0]["index"]

    logger.info(
        "TFLite 模型输入形状: %s, 输出形状: %s",
        interpreter.get_input_details()[0].get("shape"),
        interpreter.get_output_details()[0].get("shape"),
    )

    def run(tensor: np.ndarray) -> np.ndarray:
        interpreter.set_tensor(input_index, tensor)
        interpreter.invoke()
        return interpreter.get_tensor(output_index)

    return run


def _keras_runner(tf, model_path: str) -> Callable[[np.ndarray], np.ndarray]:
    """构建基于 Keras 模型的推理函数"""
    model = tf.keras.models.load_model(model_path)

    def run(tensor: np.ndarray) -> np.ndarray:
        return model.predict(tensor, verbose=0)

    return run


class SequenceModelClassifier(Classifier):
    """将特征窗口补零为 (1, seq_len, 2) 张量后调用推理函数，输出疲劳概率"""

    name = "model"

    def __init__(
        self,
        infer: Callable[[np.ndarray], np.ndarray],
        seq_len: int = DEFAULT_SEQ_LEN,
        threshold: float = DROWSY_THRESHOLD,
    ):
        """
        Args:
            infer: 推理函数，输入 (1, seq_len, 2) 张量，输出 (1, 1) 张量
            seq_len: 模型输入序列长度
            threshold: 疲劳判定阈值（严格大于）
        """
        if seq_len < 1:
            raise ValueError(f"序列长度必须为正整数，当前为 {seq_len}")
        self._infer: Optional[Callable[[np.ndarray], np.ndarray]] = infer
        self.seq_len = seq_len
        self.threshold = threshold

    @classmethod
    def from_model_path(
        cls,
        model_path: str,
        seq_len: int = DEFAULT_SEQ_LEN,
        threshold: float = DROWSY_THRESHOLD,
    ) -> "SequenceModelClassifier":
        """
        加载预训练序列模型。

        .tflite 文件使用 TFLite Interpreter，其他格式使用 Keras 加载。

        Raises:
            FileNotFoundError: 模型文件不存在时抛出
            ImportError: TensorFlow 未安装时抛出
        """
        if not os.path.exists(model_path):
            raise FileNotFoundError(f"序列模型文件不存在: {model_path}")

        tf = _load_tf()
        logger.info("加载序列模型: %s", model_path)
        if model_path.endswith(".tflite"):
            infer = _tflite_runner(tf, model_path)
        else:
            infer = _keras_runner(tf, model_path)
        return cls(infer, seq_len=seq_len, threshold=threshold)

    def build_input(self, window: Sequence[FeatureVector]) -> np.ndarray:
        """
        构建模型输入张量。

        不足 seq_len 帧时在前端补零，使真实数据位于末尾；
        超过 seq_len 帧时只取最近的 seq_len 帧。

        Returns:
            形状为 (1, seq_len, 2) 的 float32 数组
        """
        recent = list(window)[-self.seq_len:]
        tensor = np.zeros((1, self.seq_len, NUM_FEATURES), dtype=np.float32)
        padding = self.seq_len - len(recent)

        for offset, vector in enumerate(recent):
            tensor[0, padding + offset] = vector.as_row()

        logger.debug("模型输入: %d 帧真实数据 + %d 帧补零", len(recent), padding)
        return tensor

    def predict(self, window: Sequence[FeatureVector]) -> ClassificationResult:
        """
        对特征窗口进行一次推理。

        Returns:
            ClassificationResult，概率严格大于阈值时判为 Drowsy
        """
        if self._infer is None:
            raise RuntimeError("序列模型已关闭")

        output = self._infer(self.build_input(window))
        probability = float(np.asarray(output)[0][0])

        return ClassificationResult(
            probability=probability,
            label=label_for(probability, self.threshold, inclusive=False),
            source=self.name,
        )

    def classify(self, window: Sequence[FeatureVector]) -> ClassificationResult:
        return self.predict(window)

    def close(self):
        """释放推理函数引用，重复调用无副作用"""
        self._infer = None
