"""规则分类模块，模型不可用时根据最新 EAR 值估计疲劳概率"""

from typing import Sequence

from classifiers.base import DROWSY_THRESHOLD, Classifier, label_for
from models.data_models import ClassificationResult, FeatureVector

# (EAR 上界, 概率)，按上界升序匹配
EAR_PROBABILITY_TABLE = [
    (0.20, 0.90),
    (0.25, 0.70),
    (0.30, 0.30),
]
OPEN_EYE_PROBABILITY = 0.10


class HeuristicClassifier(Classifier):
    """基于 EAR 分段映射的规则分类器"""

    name = "heuristic"

    def __init__(self, threshold: float = DROWSY_THRESHOLD):
        self.threshold = threshold

    def predict(self, latest_ear: float) -> ClassificationResult:
        """
        根据单个 EAR 值输出疲劳概率。

        Args:
            latest_ear: 最近一帧的平均 EAR

        Returns:
            ClassificationResult，概率 >= 阈值时判为 Drowsy
        """
        probability = OPEN_EYE_PROBABILITY
        for upper_bound, table_probability in EAR_PROBABILITY_TABLE:
            if latest_ear < upper_bound:
                probability = table_probability
                break

        return ClassificationResult(
            probability=probability,
            label=label_for(probability, self.threshold, inclusive=True),
            source=self.name,
        )

    def classify(self, window: Sequence[FeatureVector]) -> ClassificationResult:
        if not window:
            raise ValueError("特征窗口为空，无法进行规则分类")
        return self.predict(window[-1].ear)
