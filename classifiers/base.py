"""分类器公共接口"""

from typing import Sequence

from models.data_models import ClassificationResult, FeatureVector, Label

DROWSY_THRESHOLD = 0.70


def label_for(probability: float, threshold: float, inclusive: bool) -> Label:
    """按阈值将概率映射为标签，inclusive 决定等于阈值时是否判为疲劳"""
    if inclusive:
        is_drowsy = probability >= threshold
    else:
        is_drowsy = probability > threshold
    return Label.DROWSY if is_drowsy else Label.ALERT


class Classifier:
    """分类策略基类，子类实现 classify()"""

    name = "base"

    def classify(self, window: Sequence[FeatureVector]) -> ClassificationResult:
        """根据特征窗口快照（最旧在前）输出分类结果"""
        raise NotImplementedError

    def close(self):
        """释放推理资源，默认无操作"""
