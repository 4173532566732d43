"""Type definitions for GitHub API responses."""

from typing import Dict, List, Protocol, Optional, Tuple, Union
from pydantic import BaseModel, ValidationError

# GraphQL response types with Pydantic models
class DraftStatePR(BaseModel):
    id: str
    number: int
    isDraft: bool

class DraftStatePayload(BaseModel):
    pullRequest: DraftStatePR

class DraftMutationData(BaseModel):
    markPullRequestReadyForReview: Optional[DraftStatePayload] = None
    convertPullRequestToDraft: Optional[DraftStatePayload] = None

class GraphQLErrorLocation(BaseModel):
    line: int
    column: int

class GraphQLError(BaseModel):
    message: str
    type: Optional[str] = None
    locations: Optional[List[GraphQLErrorLocation]] = None
    path: Optional[List[Union[str, int]]] = None
    extensions: Optional[Dict[str, object]] = None

class DraftMutationResponse(BaseModel):
    data: Optional[DraftMutationData] = None
    errors: Optional[List[GraphQLError]] = None

# Type for PyGithub GraphQL response
# First element is headers dict, second is the response data
GraphQLResponseType = Tuple[Dict[str, object], Dict[str, object]]

MARK_READY_MUTATION = """
mutation MarkPullRequestReadyForReview($input: MarkPullRequestReadyForReviewInput!) {
  markPullRequestReadyForReview(input: $input) {
    pullRequest { id number isDraft }
  }
}
"""

CONVERT_TO_DRAFT_MUTATION = """
mutation ConvertPullRequestToDraft($input: ConvertPullRequestToDraftInput!) {
  convertPullRequestToDraft(input: $input) {
    pullRequest { id number isDraft }
  }
}
"""

def parse_draft_mutation_response(response: Dict[str, object]) -> DraftMutationResponse:
    """Parse GraphQL response into Pydantic model."""
    try:
        return DraftMutationResponse.model_validate(response)
    except ValidationError as e:
        raise TypeError(f"Invalid GraphQL response: {e}") from e

class PyGithubRequesterInternal(Protocol):
    """Protocol for PyGithub's internal requester object."""
    def requestJsonAndCheck(
        self,
        verb: str,
        url: str,
        parameters: Optional[Dict[str, object]] = None,
        headers: Optional[Dict[str, str]] = None,
        input: Optional[Dict[str, object]] = None
    ) -> Tuple[Dict[str, object], Dict[str, object]]:
        """PyGithub's internal method returns (headers, data)."""
        ...

class GitHubRequester(Protocol):
    """Type for PyGithub requester to handle GraphQL calls.

    This types the internal _Github__requester that's needed for GraphQL.
    We use a Protocol since the requester is a private implementation detail.
    """
    def requestJsonAndCheck(
        self,
        verb: str,
        url: str,
        parameters: Optional[Dict[str, object]] = None,
        headers: Optional[Dict[str, str]] = None,
        input: Optional[Dict[str, object]] = None
    ) -> GraphQLResponseType:
        ...
