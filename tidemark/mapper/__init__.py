# Mapper Module
"""
リモートドキュメントをインデックスレコードに変換するマッパー
"""

from tidemark.mapper.config import CommentIndexingMode, FieldConfig, IndexStructureConfig
from tidemark.mapper.preprocessor import (
    PREPROCESSOR_TYPES,
    AddValuePreprocessor,
    RemoveFieldsPreprocessor,
    StructuredContentPreprocessor,
    create_preprocessor,
)
from tidemark.mapper.structure import DocumentWithCommentsMapper

__all__ = [
    "CommentIndexingMode",
    "FieldConfig",
    "IndexStructureConfig",
    "DocumentWithCommentsMapper",
    # Preprocessors
    "StructuredContentPreprocessor",
    "AddValuePreprocessor",
    "RemoveFieldsPreprocessor",
    "PREPROCESSOR_TYPES",
    "create_preprocessor",
]
