import pytest

from src.bot.errors import MappingError
from src.bot.mapping import RepositoryMapper


@pytest.fixture
def mapper():
    return RepositoryMapper([("coq/coq", "coq/coq"), ("owner/repo", "group/sub/project")])


class TestRepositoryMapper:
    def test_github_to_gitlab(self, mapper):
        assert mapper.gitlab_project_of_github("owner", "repo") == "group/sub/project"

    def test_gitlab_to_github(self, mapper):
        assert mapper.github_repo_of_gitlab_project("group/sub/project") == ("owner", "repo")

    def test_gitlab_url_to_github(self, mapper):
        assert mapper.github_repo_of_gitlab_url("https://gitlab.com/coq/coq.git") == ("coq", "coq")

    def test_unconfigured_owner_raises(self, mapper):
        with pytest.raises(MappingError, match="stranger/repo"):
            mapper.gitlab_project_of_github("stranger", "repo")

    def test_unconfigured_project_raises(self, mapper):
        with pytest.raises(MappingError):
            mapper.github_repo_of_gitlab_project("group/project")

    def test_len(self, mapper):
        assert len(mapper) == 2

    @pytest.mark.parametrize(
        "pairs",
        [
            [("a/b", "x/y"), ("a/b", "x/z")],
            [("a/b", "x/y"), ("a/c", "x/y")],
        ],
    )
    def test_duplicates_are_rejected(self, pairs):
        with pytest.raises(ValueError, match="Duplicate"):
            RepositoryMapper(pairs)
