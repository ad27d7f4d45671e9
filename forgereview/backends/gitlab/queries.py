"""GraphQL documents used by the GitLab backend."""

MERGE_REQUEST_METADATA_QUERY = """
query($fullPath: ID!, $iid: String!) {
  project(fullPath: $fullPath) {
    mergeRequest(iid: $iid) {
      id
      iid
      webUrl
      title
      description
      state
      draft
      diffHeadSha
      sourceBranch
      targetBranch
      createdAt
      updatedAt
      mergedAt
      diffRefs { baseSha headSha startSha }
      author { username }
      milestone { id iid title }
      labels { nodes { title color } }
      assignees { nodes { id username name } }
      reviewers { nodes { id username name } }
      approvedBy { nodes { username } }
      commits(first: 100) {
        nodes { sha shortId title authoredDate author { name } }
      }
      discussions(first: 100) {
        nodes {
          id
          resolved
          notes {
            nodes {
              id
              body
              system
              createdAt
              author { username }
              position { newPath newLine oldPath oldLine }
            }
          }
        }
      }
    }
  }
}
"""

PROJECT_MEMBERS_QUERY = """
query($fullPath: ID!, $cursor: String) {
  project(fullPath: $fullPath) {
    projectMembers(first: 100, after: $cursor) {
      pageInfo {
        hasNextPage
        endCursor
      }
      nodes {
        user { id username name }
      }
    }
  }
}
"""
