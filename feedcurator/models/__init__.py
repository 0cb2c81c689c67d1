from feedcurator.models.reader import Reader
from feedcurator.models.source import Source, Subscription
from feedcurator.models.article import Article
from feedcurator.models.embedding import EmbeddingRecord
from feedcurator.models.user import Interest, Exclusion, FeedbackEvent, LearnedPreference, InterestSuggestion
from feedcurator.models.digest import Digest
from feedcurator.models.user_article import UserArticle
from feedcurator.models.system_setting import Setting
from feedcurator.models.cost import LLMCallLog
from feedcurator.models.ingestion_run import IngestionRun

__all__ = [
    'Reader', 'Source', 'Subscription', 'Article', 'EmbeddingRecord',
    'Interest', 'Exclusion', 'FeedbackEvent', 'LearnedPreference', 'InterestSuggestion',
    'Digest', 'UserArticle',
    'Setting', 'LLMCallLog', 'IngestionRun',
]
